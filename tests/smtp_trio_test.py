# system imports:
from functools import partial
import logging
from pathlib import Path
import sys
import tempfile
import trio # pip install trio
import trio.testing
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# naivemail imports:
from compose import OutboundMessage
from mailstore import MailStore
import naivemail
import smtp_proto as proto
import smtp_trio

logger = logging.getLogger ( __name__ )


class RawRequest ( proto.Request[proto.SuccessResponse] ):
	responsecls = proto.SuccessResponse

	def __init__ ( self, line: str ) -> None:
		self.line = line

	def client_protocol ( self, client: proto.Client ) -> proto.RequestProtocolGenerator:
		yield from proto.client_util.send_recv_done ( self.line )

	def server_protocol ( self, server: proto.Server, argtext: str ) -> proto.RequestProtocolGenerator:
		yield from ()


class Tests ( unittest.TestCase ):
	def setUp ( self ) -> None:
		self._tmp = tempfile.TemporaryDirectory()
		self.root = Path ( self._tmp.name )
		self.store = MailStore ( self.root / 'emails', self.root / 'attachments' )

	def tearDown ( self ) -> None:
		self._tmp.cleanup()

	def test_client_server ( self ) -> None:
		test = self
		self.maxDiff = None
		attachment = self.root / 'img.png'
		attachment.write_bytes ( b'\x89PNG\r\n\x1a\n' + bytes ( range ( 256 ) ) )

		async def test_fail ( coro, responserepr: str ) -> None:
			try:
				r = await coro
			except proto.ErrorResponse as e:
				test.assertEqual ( repr ( e ), responserepr )
			else:
				test.fail ( f'got {r!r} but was expecting {responserepr}' )

		async def client_task ( stream: trio.abc.Stream ) -> None:
			cli = smtp_trio.Client ( smtp_trio.Transport ( stream, 5.0 ), 'mx.test' )
			test.assertEqual ( repr ( await cli.greeting() ), "smtp_proto.SuccessResponse(220, 'mx.test SMTP service ready.')" )

			r1 = await cli.ehlo ( 'client.test' )
			test.assertEqual ( type ( r1 ), proto.EhloResponse )
			test.assertEqual ( r1.code, 250 )
			test.assertEqual ( r1.lines[0], 'mx.test - It is OK.' )
			test.assertEqual ( sorted ( r1.esmtp_auth ), [ 'CRAM-MD5', 'LOGIN', 'PLAIN' ] )
			test.assertEqual ( r1.esmtp_features['SIZE'], str ( proto.Server._MAXDATA ) )
			test.assertIn ( 'PIPELINING', r1.esmtp_features )

			test.assertEqual ( repr ( await cli.helo ( 'client.test' ) ), "smtp_proto.SuccessResponse(250, 'Hello, welcome to mx.test!')" )
			test.assertEqual ( repr ( await cli.noop() ), "smtp_proto.SuccessResponse(250, 'OK')" )
			await test_fail ( cli._request ( RawRequest ( 'FOO\r\n' ) ), "smtp_proto.ErrorResponse(500, '5.5.1 Unknown command')" )
			await test_fail ( cli._request ( RawRequest ( 'MAIL <a@x.com>\r\n' ) ), "smtp_proto.ErrorResponse(500, '5.5.2 Unknown command')" )
			await test_fail ( cli._request ( RawRequest ( 'MAIL\r\n' ) ), "smtp_proto.ErrorResponse(501, 'Invisible user are not welcome!')" )
			test.assertEqual ( repr ( await cli.rset() ), "smtp_proto.SuccessResponse(250, 'OK')" )

			msg = OutboundMessage ( 'me@x.com', [ 'you@y.org', 'them@y.org' ],
				subject = 'holiday',
				body = 'photos attached\n.\nthat dot was on a line by itself',
				attachments = [ attachment ],
			)
			test.assertEqual ( repr ( await cli.send_message ( msg ) ), "smtp_proto.SuccessResponse(250, 'Message sent')" )

			# nothing parseable still gets stored, but is refused
			await test_fail ( cli.data ( b'\r\n' ), "smtp_proto.ErrorResponse(451, 'Error in processing email')" )

			test.assertEqual ( repr ( await cli.quit() ), "smtp_proto.SuccessResponse(221, 'BYE')" )
			await cli.close()

		async def server_task ( stream: trio.abc.Stream ) -> None:
			srv = smtp_trio.Server.from_stream ( stream, 'mx.test', self.store, 5.0 )
			await srv.run()

		async def _test() -> None:
			thing1, thing2 = trio.testing.lockstep_stream_pair()
			async with trio.open_nursery() as nursery:
				nursery.start_soon ( client_task, thing1 )
				nursery.start_soon ( server_task, thing2 )

		trio.run ( _test )

		records = sorted ( self.store.messages_dir.iterdir() )
		test.assertEqual ( len ( records ), 2 )
		stored = [ p.read_bytes() for p in records ]
		sent = [ r for r in stored if b'Subject: holiday' in r ]
		test.assertEqual ( len ( sent ), 1 )
		test.assertIn ( b'To: you@y.org, them@y.org\r\n', sent[0] )
		# the client stuffed the lone dot and the server kept the bytes as they came
		test.assertIn ( b'\r\n..\r\nthat dot', sent[0] )

		[ saved ] = list ( self.store.attachments_dir.iterdir() )
		test.assertTrue ( saved.name.endswith ( '_0_img.png' ) )
		test.assertEqual ( saved.read_bytes(), attachment.read_bytes() )

	def test_serve ( self ) -> None:
		test = self

		async def _test() -> None:
			async with trio.open_nursery() as nursery:
				listeners = await nursery.start ( smtp_trio.serve, self.store, 'mx.test', '127.0.0.1', 0, 5.0 )
				port = listeners[0].socket.getsockname()[1]
				for n in range ( 2 ):
					cli = await smtp_trio.Client.connect ( '127.0.0.1', port, 5.0 )
					await cli.greeting()
					await cli.mail_from ( f'sender{n}@x.com' )
					await cli.rcpt_to ( 'rcpt@y.org' )
					r = await cli.data ( b'Subject: over tcp\r\n\r\nhello\r\n' )
					test.assertEqual ( r.code, 250 )
					await cli.quit()
					await cli.close()
				nursery.cancel_scope.cancel()

		trio.run ( _test )
		test.assertEqual ( len ( list ( self.store.messages_dir.iterdir() ) ), 2 )

	def test_serve_sized ( self ) -> None:
		test = self

		async def _test() -> None:
			async with trio.open_nursery() as nursery:
				listeners = await nursery.start ( partial ( smtp_trio.serve, self.store, 'mx.test', '127.0.0.1', 0, 5.0,
					servercls = naivemail.server_class ( 64 ),
				) )
				port = listeners[0].socket.getsockname()[1]
				cli = await smtp_trio.Client.connect ( '127.0.0.1', port, 5.0 )
				await cli.greeting()
				r1 = await cli.ehlo ( 'client.test' )
				test.assertEqual ( r1.esmtp_features['SIZE'], '64' )
				await cli.mail_from ( 'a@x.com' )
				await cli.rcpt_to ( 'b@y.org' )
				with test.assertRaises ( proto.ErrorResponse ) as cm:
					await cli.data ( b'Subject: big\r\n\r\n' + b'x' * 100 + b'\r\n' )
				test.assertEqual ( cm.exception.code, 552 )
				await cli.quit()
				await cli.close()
				nursery.cancel_scope.cancel()

		trio.run ( _test )
		test.assertFalse ( self.store.messages_dir.exists() )
		# the limit belongs to the served class alone
		test.assertEqual ( proto.Server._MAXDATA, 32 * 1024 * 1024 )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
