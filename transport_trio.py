from __future__ import annotations

# python imports:
import logging
import trio # pip install trio
from typing import Optional as Opt, Type

# naivemail imports:
from transport import AsyncTransport, format_peer
from util import BYTES

logger = logging.getLogger ( __name__ )


class TrioTransport ( AsyncTransport ):
	happy_eyeballs_delay: float = 0.25 # this is the same as trio's default circa version 0.16.0
	stream: trio.abc.Stream

	def __init__ ( self, stream: trio.abc.Stream, timeout: Opt[float] = None ) -> None:
		self.stream = stream
		self.timeout = timeout

	@classmethod
	async def connect ( cls: Type[TrioTransport], hostname: str, port: int, timeout: Opt[float] = None ) -> TrioTransport:
		stream = await trio.open_tcp_stream ( hostname, port,
			happy_eyeballs_delay = cls.happy_eyeballs_delay,
		)
		return cls ( stream, timeout )

	@property
	def peer ( self ) -> str:
		sock = getattr ( self.stream, 'socket', None ) # only trio.SocketStream has one
		if sock is None:
			return 'unknown'
		try:
			return format_peer ( sock.getpeername() )
		except OSError:
			return 'unknown'

	def _deadline ( self ) -> float:
		return self.timeout if self.timeout is not None else float ( 'inf' )

	async def read ( self ) -> bytes:
		with trio.move_on_after ( self._deadline() ):
			try:
				return await self.stream.receive_some()
			except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
				raise ConnectionError ( f'{type(self).__module__}.{type(self).__name__} read failed: {e!r}' ) from e
		raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout waiting to read data' )

	async def write ( self, data: BYTES ) -> None:
		with trio.move_on_after ( self._deadline() ):
			try:
				await self.stream.send_all ( data )
			except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
				raise ConnectionError ( f'{type(self).__module__}.{type(self).__name__} write failed: {e!r}' ) from e
			return
		raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout waiting to write {len(data)} bytes' )

	async def close ( self ) -> None:
		with trio.move_on_after ( 0.05 ):
			await self.stream.aclose()
