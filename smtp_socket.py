from __future__ import annotations

# python imports:
import logging
import socket
import threading
from typing import Optional as Opt, Type

# naivemail imports:
from mailstore import MailStore
import smtp_sync
from transport import format_peer
from transport_socket import SocketTransport as Transport

logger = logging.getLogger ( __name__ )


class Client ( smtp_sync.Client ):
	@classmethod
	def connect ( cls: Type[Client],
		hostname: str,
		port: int,
		timeout: Opt[float] = None,
	) -> Client:
		transport = Transport.connect ( hostname, port, timeout )
		return cls ( transport, hostname )


class Server ( smtp_sync.Server ):
	@classmethod
	def from_socket ( cls: Type[Server],
		sock: socket.socket,
		server_hostname: str,
		store: MailStore,
		timeout: Opt[float] = None,
	) -> Server:
		transport = Transport ( sock, timeout )
		return cls ( transport, server_hostname, store )


def _serve_connection ( sock: socket.socket, store: MailStore, hostname: str, timeout: Opt[float] ) -> None:
	log = logger.getChild ( '_serve_connection' )
	peer = 'unknown'
	try:
		server = Server.from_socket ( sock, hostname, store, timeout )
		peer = server.proto.peer
		server.run()
	except Exception:
		log.exception ( f'unhandled error serving {peer}:' )
		sock.close()


def serve_forever ( listener: socket.socket, store: MailStore, hostname: str, timeout: Opt[float] = None ) -> None:
	''' accept connections on `listener` forever, one thread per connection '''
	log = logger.getChild ( 'serve_forever' )
	while True:
		sock, address = listener.accept()
		log.debug ( f'accepted {format_peer(address)}' )
		thread = threading.Thread (
			target = _serve_connection,
			args = ( sock, store, hostname, timeout ),
			daemon = True,
		)
		thread.start()


def serve ( store: MailStore,
	hostname: str = 'localhost',
	host: str = '',
	port: int = 25,
	timeout: Opt[float] = None,
) -> None:
	log = logger.getChild ( 'serve' )
	with socket.create_server ( ( host, port ) ) as listener:
		log.info ( f'listening on {format_peer(listener.getsockname())} as {hostname!r}' )
		serve_forever ( listener, store, hostname, timeout )
