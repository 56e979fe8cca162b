from __future__ import annotations

# python imports:
import logging
import socket
from typing import Optional as Opt, Type

# naivemail imports:
from transport import SyncTransport, format_peer
from util import BYTES

logger = logging.getLogger ( __name__ )


class SocketTransport ( SyncTransport ):
	sock: socket.socket

	def __init__ ( self, sock: socket.socket, timeout: Opt[float] = None ) -> None:
		self.sock = sock
		self.timeout = timeout
		# socket.timeout is an OSError, so an idle peer looks like a dropped one
		self.sock.settimeout ( timeout )

	@classmethod
	def connect ( cls: Type[SocketTransport], hostname: str, port: int, timeout: Opt[float] = None ) -> SocketTransport:
		log = logger.getChild ( 'SocketTransport.connect' )
		for *params, _, address in socket.getaddrinfo ( hostname, port, type = socket.SOCK_STREAM ):
			sock = socket.socket ( *params )
			try:
				sock.settimeout ( timeout )
				sock.connect ( address )
			except OSError as e:
				log.warning ( f'Error connecting to {address=}: {e!r}' )
				sock.close()
				continue
			return cls ( sock, timeout )
		raise ConnectionError ( f'Unable to connect to {hostname=} {port=}' )

	@property
	def peer ( self ) -> str:
		try:
			return format_peer ( self.sock.getpeername() )
		except OSError:
			return 'unknown'

	def read ( self ) -> bytes:
		return self.sock.recv ( 4096 )

	def write ( self, data: BYTES ) -> None:
		self.sock.sendall ( data )

	def close ( self ) -> None:
		self.sock.close()
