from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
import re
from types import TracebackType
from typing import (
	Callable, Generator, Generic, Iterator, Optional as Opt, Sequence as Seq,
	Tuple, Type, TypeVar, Union,
)

# naivemail imports:
from util import bytes_types, BYTES, s2b

logger = logging.getLogger ( __name__ )

EXC_INFO = Opt[Union[
	Tuple[Type[BaseException],BaseException,TracebackType],
	Tuple[None,None,None],
]]

_r_eol = re.compile ( r'[\r\n]' )


class Event ( Exception ):
	# events travel from the sans-io protocol up to the i/o layer. If the
	# handler fails, it stores the failure here and the protocol generator
	# gets it thrown back in at the point where it yielded the event
	exc_info: EXC_INFO = None

	def go ( self ) -> Iterator[Event]:
		yield self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


class Closed ( Exception ):
	''' the connection is finished: peer hung up, i/o failed, a read deadline expired or the session ended normally '''
	def __init__ ( self, reason: str = '' ) -> None:
		super().__init__ ( reason or '(none given)' )


class ProtocolError ( Exception ):
	pass


ResponseType = TypeVar ( 'ResponseType', bound = 'BaseResponse' )
class BaseResponse ( Exception, metaclass = ABCMeta ):
	@abstractmethod
	def is_success ( self ) -> bool:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.is_success()' )


RequestProtocolGenerator = Generator[Event,None,None]


class BaseRequest ( metaclass = ABCMeta ):
	# one instance drives one command through its exchange:
	# - the client constructs it with __init__() and runs _client_protocol()
	# - the server creates it with __new__() and runs _server_protocol()
	base_response: Opt[BaseResponse] = None

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'

	@abstractmethod
	def _client_protocol ( self, client: ClientProtocol ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._client_protocol()' )

	@abstractmethod
	def _server_protocol ( self, server: ServerProtocol, argtext: str ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._server_protocol()' )


class RequestT ( BaseRequest, Generic[ResponseType] ):
	responsecls: Type[ResponseType]

	@property
	def response ( self ) -> ResponseType:
		assert isinstance ( self.base_response, self.responsecls )
		return self.base_response
RequestType = RequestT[ResponseType]


class NeedDataEvent ( Event ):
	''' the protocol is parked until the next line arrives; the line is left in .data '''
	data: Opt[bytes] = None
	response: Opt[BaseResponse] = None

	def reset ( self ) -> NeedDataEvent:
		self.data = None
		self.response = None
		return self

	def go ( self ) -> Iterator[Event]:
		self.reset()
		yield from super().go()


class SendDataEvent ( Event ):

	def __init__ ( self, *chunks: bytes ) -> None:
		self.chunks: Seq[bytes] = chunks

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(chunks={self.chunks!r})'


def raise_if_failed ( event: Event ) -> None:
	''' for events yielded once there is no request generator left to throw into '''
	if event.exc_info:
		failure = event.exc_info[1]
		event.exc_info = None
		if isinstance ( failure, Closed ):
			raise failure
		raise Closed ( repr ( failure ) ) from failure


class Protocol ( metaclass = ABCMeta ):
	_buf: bytes = b''
	request: Opt[BaseRequest] = None
	request_protocol: Opt[RequestProtocolGenerator] = None
	need_data: Opt[NeedDataEvent] = None
	_MAXLINE: int

	def receive ( self, data: BYTES ) -> Iterator[Event]:
		''' feed raw bytes from the transport, get back the events they trigger '''
		assert isinstance ( data, bytes_types ), f'invalid {data=}'
		if not data: # EOF
			if self._buf:
				# deliver the unterminated tail, the next EOF closes
				buf, self._buf = self._buf, b''
				yield from self._receive_line ( buf )
				return
			raise Closed ( 'EOF' )
		self._buf += bytes ( data )
		start = 0
		try:
			while ( end := self._buf.find ( b'\n', start ) + 1 ):
				line = self._buf[start:end]
				start = end
				if len ( line ) > self._MAXLINE:
					raise ProtocolError ( 'maximum line length exceeded' )
				yield from self._receive_line ( line )
		finally:
			if start:
				self._buf = self._buf[start:]
		if len ( self._buf ) > self._MAXLINE:
			raise ProtocolError ( 'maximum line length exceeded' )

	@abstractmethod
	def _receive_line ( self, line: bytes ) -> Iterator[Event]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._receive_line()' )

	def _finish_request ( self ) -> Opt[BaseRequest]:
		request, self.request = self.request, None
		self.request_protocol = None
		return request

	def _run_protocol ( self ) -> Iterator[Event]:
		log = logger.getChild ( 'Protocol._run_protocol' )
		gen = self.request_protocol
		assert self.request is not None, f'invalid {self.request=}'
		assert gen is not None, f'invalid {self.request_protocol=}'
		failure: Opt[BaseException] = None
		try:
			while True:
				if failure is not None:
					event = gen.throw ( failure )
					failure = None
				else:
					event = next ( gen )
				if isinstance ( event, NeedDataEvent ):
					if self.request.base_response is not None:
						log.warning ( f'INTERNAL ERROR - {self.request!r} waiting for data with a response already set ({self.request.base_response!r})' )
						self.request.base_response = None
					self.need_data = event
					return
				yield event
				if event.exc_info:
					failure = event.exc_info[1]
					event.exc_info = None
		except Closed:
			self._finish_request()
			raise
		except BaseResponse as response: # client side
			request = self._finish_request()
			if not response.is_success():
				raise
			assert request is not None
			request.base_response = response
		except SendDataEvent as event: # server side, final response raised
			self._finish_request()
			yield event
			raise_if_failed ( event )
		except StopIteration:
			request = self._finish_request()
			if isinstance ( self, ClientProtocol ) and request is not None and request.base_response is None:
				# the i/o layer would wait forever for a response that never comes
				log.warning ( f'INTERNAL ERROR: {request!r} client protocol finished without a response' )
				raise Closed ( 'INTERNAL ERROR - CLIENT PROTOCOLS MUST THROW THEIR RESPONSE' )
		except Exception as e:
			self._finish_request()
			log.exception ( 'internal protocol error:' )
			raise Closed ( repr ( e ) ) from e


class ClientProtocol ( Protocol ):
	_MAXLINE = 8192

	def send ( self, request: BaseRequest ) -> Iterator[Event]:
		assert self.request is None, f'trying to send {request=} but not finished processing {self.request=}'
		self.request = request
		self.request_protocol = request._client_protocol ( self )
		yield from self._run_protocol()

	def _receive_line ( self, line: bytes ) -> Iterator[Event]:
		assert self.need_data, f'not expecting data at this time ({line!r})'
		self.need_data.data = line
		self.need_data = None
		yield from self._run_protocol()


class ServerProtocol ( Protocol ):
	def __init__ ( self, hostname: str, peer: str = 'unknown' ) -> None:
		assert isinstance ( hostname, str ) and not _r_eol.search ( hostname ), f'invalid {hostname=}'
		self.hostname = hostname
		self.peer = peer # for logs and trace headers
		self.reset()

	def reset ( self ) -> None:
		pass

	def startup ( self ) -> Iterator[Event]:
		# override this if the server speaks first
		yield from ()

	@abstractmethod
	def _parse_request_line ( self, line: bytes ) -> Tuple[Opt[Type[BaseRequest]],str]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._parse_request_line()' )

	@abstractmethod
	def _error_invalid_command ( self ) -> Event:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._error_invalid_command()' )

	def _receive_line ( self, line: bytes ) -> Iterator[Event]:
		if self.need_data:
			self.need_data.data = line
			self.need_data = None
			yield from self._run_protocol()
			return
		assert self.request is None, 'server internal state error - not waiting for data but a request is active'
		requestcls, argtext = self._parse_request_line ( line )
		if requestcls is None:
			event = self._error_invalid_command()
			yield event
			raise_if_failed ( event )
			return
		request: BaseRequest = requestcls.__new__ ( requestcls )
		self.request = request
		self.request_protocol = request._server_protocol ( self, argtext )
		yield from self._run_protocol()

#region client protocol helpers

class ClientUtil:
	def __init__ ( self,
		parser: Callable[[bytes],ResponseType],
	) -> None:
		self.parser = parser

	def send ( self, line: str ) -> Iterator[Event]:
		assert line.endswith ( '\r\n' ), f'invalid {line=}'
		yield SendDataEvent ( s2b ( line, 'utf-8' ) )

	def recv_ok ( self, event: Opt[NeedDataEvent] = None ) -> Iterator[Event]:
		if event is None:
			event = NeedDataEvent()
		yield from event.go()
		event.response = response = self.parser ( event.data or b'' )
		if not response.is_success():
			raise response

	def recv_done ( self ) -> Iterator[Event]:
		yield from ( event := NeedDataEvent() ).go()
		raise self.parser ( event.data or b'' )

	def send_recv_ok ( self, line: str, event: Opt[NeedDataEvent] = None ) -> Iterator[Event]:
		yield from self.send ( line )
		yield from self.recv_ok ( event )

	def send_recv_done ( self, line: str ) -> Iterator[Event]:
		yield from self.send ( line )
		yield from self.recv_done()

#endregion client protocol helpers
