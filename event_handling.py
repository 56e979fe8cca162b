from __future__ import annotations

# python imports:
from abc import ABCMeta
import contextlib
import logging
import sys
import time
from typing import Iterator, Type

# naivemail imports:
from base_proto import (
	RequestType, ResponseType, Event, SendDataEvent, ClientProtocol,
	ServerProtocol, Closed, ProtocolError,
)
from transport import SyncTransport, AsyncTransport
from util import b2log

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def _event_exception_safety ( event: Event ) -> Iterator[None]:
	try:
		yield
	except Exception:
		event.exc_info = sys.exc_info()


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	# TimeoutError and ConnectionError are both OSErrors
	try:
		yield
	except OSError as e:
		raise Closed ( repr ( e ) ) from e


class SyncEventHandler:
	transport: SyncTransport

	def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'SyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{b2log(chunk)}' )
			with close_if_oserror():
				self.transport.write ( chunk )

	def _on_event ( self, event: Event ) -> None:
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			func ( event )

	def close ( self ) -> None:
		self.transport.close()


class AsyncEventHandler:
	transport: AsyncTransport

	async def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'AsyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{b2log(chunk)}' )
			with close_if_oserror():
				await self.transport.write ( chunk )

	async def _on_event ( self, event: Event ) -> None:
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			await func ( event )

	async def close ( self ) -> None:
		await self.transport.close()


class Client ( metaclass = ABCMeta ):
	protocls: Type[ClientProtocol]
	proto: ClientProtocol


class SyncClient ( SyncEventHandler, Client ):
	def __init__ ( self, transport: SyncTransport, server_hostname: str ) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls()

	def _request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		log = logger.getChild ( 'SyncClient._request' )
		for event in self.proto.send ( request ):
			self._on_event ( event )
			if event.exc_info:
				raise Closed ( repr ( event.exc_info[1] ) ) from event.exc_info[1]
		while not request.base_response:
			with close_if_oserror():
				data: bytes = self.transport.read()
			log.debug ( f'C<{b2log(data)}' )
			for event in self.proto.receive ( data ):
				self._on_event ( event )
		return request.response


class AsyncClient ( AsyncEventHandler, Client ):
	def __init__ ( self, transport: AsyncTransport, server_hostname: str ) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls()

	async def _request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		log = logger.getChild ( 'AsyncClient._request' )
		for event in self.proto.send ( request ):
			await self._on_event ( event )
			if event.exc_info:
				raise Closed ( repr ( event.exc_info[1] ) ) from event.exc_info[1]
		while not request.base_response:
			with close_if_oserror():
				data: bytes = await self.transport.read()
			log.debug ( f'C<{b2log(data)}' )
			for event in self.proto.receive ( data ):
				await self._on_event ( event )
		return request.response


class Server ( metaclass = ABCMeta ):
	protocls: Type[ServerProtocol]
	proto: ServerProtocol
	started: float = 0.0

	def _session_opened ( self ) -> None:
		log = logger.getChild ( 'Server._session_opened' )
		self.started = time.monotonic()
		log.info ( f'session with {self.proto.peer} opened' )

	def _session_ended ( self, reason: str ) -> None:
		log = logger.getChild ( 'Server._session_ended' )
		elapsed = time.monotonic() - self.started
		log.info ( f'session with {self.proto.peer} ended after {elapsed:.1f}s: {reason}' )


class SyncServer ( SyncEventHandler, Server ):
	def __init__ ( self, transport: SyncTransport, server_hostname: str ) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( server_hostname, transport.peer )

	def run ( self ) -> None:
		log = logger.getChild ( 'SyncServer.run' )
		self._session_opened()
		try:
			for event in self.proto.startup():
				self._on_event ( event )

			while True:
				with close_if_oserror():
					data = self.transport.read()
				log.debug ( f'C>{b2log(data)}' )
				for event in self.proto.receive ( data ):
					self._on_event ( event )
		except Closed as e:
			self._session_ended ( e.args[0] )
		except ProtocolError as e:
			log.warning ( f'dropping {self.proto.peer}: {e}' )
			self._session_ended ( 'protocol error' )
		finally:
			self.transport.close()


class AsyncServer ( AsyncEventHandler, Server ):
	def __init__ ( self, transport: AsyncTransport, server_hostname: str ) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( server_hostname, transport.peer )

	async def run ( self ) -> None:
		log = logger.getChild ( 'AsyncServer.run' )
		self._session_opened()
		try:
			for event in self.proto.startup():
				await self._on_event ( event )

			while True:
				with close_if_oserror():
					data = await self.transport.read()
				log.debug ( f'C>{b2log(data)}' )
				for event in self.proto.receive ( data ):
					await self._on_event ( event )
		except Closed as e:
			self._session_ended ( e.args[0] )
		except ProtocolError as e:
			log.warning ( f'dropping {self.proto.peer}: {e}' )
			self._session_ended ( 'protocol error' )
		finally:
			await self.transport.close()
