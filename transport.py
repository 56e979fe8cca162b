# python imports:
from abc import ABCMeta, abstractmethod
import logging
from typing import Any, Optional as Opt

# naivemail imports:
from util import BYTES

logger = logging.getLogger ( __name__ )


def format_peer ( address: Any ) -> str:
	# socket addresses are (host, port) for ipv4 and (host, port, flow, scope) for ipv6
	if isinstance ( address, tuple ) and len ( address ) >= 2:
		return f'{address[0]}:{address[1]}'
	return str ( address ) if address else 'unknown'


class Transport ( metaclass = ABCMeta ):
	timeout: Opt[float] = None # seconds allowed per read or write, None waits forever

	@property
	def peer ( self ) -> str:
		return 'unknown'


class SyncTransport ( Transport ):
	@abstractmethod
	def read ( self ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )


class AsyncTransport ( Transport ):
	@abstractmethod
	async def read ( self ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	async def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	async def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )
