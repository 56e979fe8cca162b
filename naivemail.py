'''
Receive-only mail endpoint: accepts SMTP sessions, stores every message
verbatim and saves its attachments as separate files.

	python naivemail.py --port 2525 --messages-dir emails --attachments-dir attachments
'''
from __future__ import annotations

# system imports:
import argparse
from functools import partial
import logging
import sys
from typing import List, Optional as Opt, Type

import packaging.version # pip install packaging
import trio # pip install trio

# naivemail imports:
from mailstore import MailStore
import smtp_proto
import smtp_trio

__version__ = packaging.version.parse ( '0.1.0' )

logger = logging.getLogger ( __name__ )


def parse_args ( argv: Opt[List[str]] = None ) -> argparse.Namespace:
	parser = argparse.ArgumentParser ( prog = 'naivemail', description = __doc__.strip().splitlines()[0] )
	parser.add_argument ( '--host', default = None, help = 'address to listen on (default: all interfaces)' )
	parser.add_argument ( '--port', type = int, default = 25 )
	parser.add_argument ( '--hostname', default = 'localhost', help = 'name announced in the greeting and trace headers' )
	parser.add_argument ( '--messages-dir', default = 'emails' )
	parser.add_argument ( '--attachments-dir', default = 'attachments' )
	parser.add_argument ( '--timeout', type = float, default = 300.0, help = 'seconds to wait for each read from a client' )
	parser.add_argument ( '--max-size', type = int, default = smtp_proto.Server._MAXDATA, help = 'largest accepted message in bytes' )
	parser.add_argument ( '-v', '--verbose', action = 'store_true', help = 'log wire traffic' )
	parser.add_argument ( '--version', action = 'version', version = f'%(prog)s {__version__}' )
	return parser.parse_args ( argv )


def server_class ( max_size: int ) -> Type[smtp_trio.Server]:
	''' a session class that refuses DATA past `max_size` bytes '''
	class SizedProtocol ( smtp_proto.Server ):
		_MAXDATA = max_size

	class SizedServer ( smtp_trio.Server ):
		protocls = SizedProtocol

	return SizedServer


def main ( argv: Opt[List[str]] = None ) -> int:
	args = parse_args ( argv )
	logging.basicConfig (
		level = logging.DEBUG if args.verbose else logging.INFO,
		format = '[%(name)s %(levelname)s] %(message)s',
	)
	log = logger.getChild ( 'main' )
	if args.max_size <= 0:
		log.error ( f'invalid --max-size {args.max_size}' )
		return 2
	store = MailStore ( args.messages_dir, args.attachments_dir )
	log.info ( f'naivemail {__version__} storing messages in {str(store.messages_dir)!r} and attachments in {str(store.attachments_dir)!r}' )
	try:
		trio.run ( partial ( smtp_trio.serve, store,
			hostname = args.hostname,
			host = args.host,
			port = args.port,
			timeout = args.timeout,
			servercls = server_class ( args.max_size ),
		) )
	except KeyboardInterrupt:
		log.info ( 'shutting down' )
	except OSError as e:
		log.error ( f'unable to listen on port {args.port}: {e}' )
		return 1
	return 0


if __name__ == '__main__':
	sys.exit ( main() )
