# python imports:
import logging
from pathlib import Path
import socket
import sys
import trio # pip install trio
import trio.testing
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# naivemail imports:
import transport
from transport_socket import SocketTransport
from transport_trio import TrioTransport
from util import BYTES

logger = logging.getLogger ( __name__ )

class Tests ( unittest.TestCase ):
	def test_abstract ( self ) -> None:
		async def _test() -> None:
			class ST ( transport.SyncTransport ):
				def read ( self ) -> bytes:
					return super().read()
				def write ( self, data: BYTES ) -> None:
					super().write ( data )
				def close ( self ) -> None:
					super().close()
			st = ST()
			self.assertEqual ( st.peer, 'unknown' )
			self.assertIsNone ( st.timeout )
			with self.assertRaises ( NotImplementedError ):
				st.read()
			with self.assertRaises ( NotImplementedError ):
				st.write ( b'foo' )
			with self.assertRaises ( NotImplementedError ):
				st.close()
			class AT ( transport.AsyncTransport ):
				async def read ( self ) -> bytes:
					return await super().read()
				async def write ( self, data: BYTES ) -> None:
					await super().write ( data )
				async def close ( self ) -> None:
					await super().close()
			at = AT()
			with self.assertRaises ( NotImplementedError ):
				await at.read()
			with self.assertRaises ( NotImplementedError ):
				await at.write ( b'foo' )
			with self.assertRaises ( NotImplementedError ):
				await at.close()
		trio.run ( _test )

	def test_format_peer ( self ) -> None:
		self.assertEqual ( transport.format_peer ( ( '127.0.0.1', 25 ) ), '127.0.0.1:25' )
		self.assertEqual ( transport.format_peer ( ( '::1', 25, 0, 0 ) ), '::1:25' )
		self.assertEqual ( transport.format_peer ( '' ), 'unknown' )
		self.assertEqual ( transport.format_peer ( None ), 'unknown' )

	def test_socket ( self ) -> None:
		test = self
		a, b = socket.socketpair()
		ta = SocketTransport ( a, timeout = 0.1 )
		tb = SocketTransport ( b, timeout = 5.0 )
		try:
			test.assertEqual ( ta.peer, 'unknown' ) # unix socket pairs have no address
			tb.write ( b'hello\r\n' )
			test.assertEqual ( ta.read(), b'hello\r\n' )
			with test.assertRaises ( OSError ): # socket.timeout is a TimeoutError is an OSError
				ta.read()
			tb.close()
			test.assertEqual ( ta.read(), b'' )
		finally:
			ta.close()
			tb.close()

	def test_trio ( self ) -> None:
		test = self
		async def _test() -> None:
			a, b = trio.testing.memory_stream_pair()
			ta = TrioTransport ( a, timeout = 1.0 )
			tb = TrioTransport ( b )
			test.assertEqual ( ta.peer, 'unknown' )
			await tb.write ( b'hello\r\n' )
			test.assertEqual ( await ta.read(), b'hello\r\n' )
			with test.assertRaises ( TimeoutError ):
				await ta.read()
			await tb.close()
			test.assertEqual ( await ta.read(), b'' )
			await ta.close()
			with test.assertRaises ( ConnectionError ):
				await ta.write ( b'too late' )
		trio.run ( _test, clock = trio.testing.MockClock ( autojump_threshold = 0 ) )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
