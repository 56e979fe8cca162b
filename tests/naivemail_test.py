# python imports:
import contextlib
import io
import logging
from pathlib import Path
import sys
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# naivemail imports:
import naivemail
import smtp_proto
import smtp_trio

logger = logging.getLogger ( __name__ )

class Tests ( unittest.TestCase ):
	def test_defaults ( self ) -> None:
		args = naivemail.parse_args ( [] )
		self.assertIsNone ( args.host )
		self.assertEqual ( args.port, 25 )
		self.assertEqual ( args.hostname, 'localhost' )
		self.assertEqual ( args.messages_dir, 'emails' )
		self.assertEqual ( args.attachments_dir, 'attachments' )
		self.assertEqual ( args.timeout, 300.0 )
		self.assertEqual ( args.max_size, smtp_proto.Server._MAXDATA )
		self.assertFalse ( args.verbose )

	def test_flags ( self ) -> None:
		args = naivemail.parse_args ( [
			'--host', '127.0.0.1', '--port', '2525', '--hostname', 'mx.test',
			'--messages-dir', 'm', '--attachments-dir', 'a', '--timeout', '10',
			'--max-size', '1024', '-v',
		] )
		self.assertEqual ( ( args.host, args.port, args.hostname ), ( '127.0.0.1', 2525, 'mx.test' ) )
		self.assertEqual ( ( args.messages_dir, args.attachments_dir ), ( 'm', 'a' ) )
		self.assertEqual ( ( args.timeout, args.max_size, args.verbose ), ( 10.0, 1024, True ) )

	def test_version ( self ) -> None:
		out = io.StringIO()
		with contextlib.redirect_stdout ( out ), self.assertRaises ( SystemExit ):
			naivemail.parse_args ( [ '--version' ] )
		self.assertEqual ( out.getvalue().strip(), f'naivemail {naivemail.__version__}' )
		self.assertEqual ( str ( naivemail.__version__ ), '0.1.0' )

	def test_server_class ( self ) -> None:
		cls = naivemail.server_class ( 1024 )
		self.assertTrue ( issubclass ( cls, smtp_trio.Server ) )
		self.assertEqual ( cls.protocls._MAXDATA, 1024 )
		self.assertIn ( 'SIZE 1024', cls.protocls ( 'mx.test' ).capabilities() )
		self.assertEqual ( smtp_proto.Server._MAXDATA, 32 * 1024 * 1024 )

	def test_bad_max_size ( self ) -> None:
		logging.disable ( logging.CRITICAL )
		try:
			self.assertEqual ( naivemail.main ( [ '--max-size', '0' ] ), 2 )
		finally:
			logging.disable ( logging.NOTSET )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
