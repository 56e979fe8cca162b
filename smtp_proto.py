#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import abstractmethod
import enum
import logging
import re
from typing import (
	Callable, Dict, Iterator, List, Optional as Opt, Sequence as Seq, Set,
	Tuple, Type,
)

# naivemail imports:
import address
from base_proto import (
	BaseResponse, ResponseType, BaseRequest, RequestT, Event, NeedDataEvent,
	SendDataEvent, Closed, ProtocolError, RequestProtocolGenerator,
	ClientProtocol, ServerProtocol,
	ClientUtil,
)
from util import bytes_types, BYTES, b2s, s2b

logger = logging.getLogger ( __name__ )


_r_eol = re.compile ( r'[\r\n]' )
_r_line_dot = re.compile ( rb'^\.', re.M )
_r_command = re.compile ( r'^(\S*)(?:\s+(.*))?$', re.S )

SENTINELS = ( b'.\r\n', b'.\n' )

#endregion
#region RESPONSES -------------------------------------------------------------

class Response ( BaseResponse ):
	def __init__ ( self, code: int, *lines: str ) -> None:
		self.code = code
		assert lines and all ( isinstance ( line, str ) for line in lines ), f'invalid {lines=}'
		self.lines = lines
		super().__init__()

	@staticmethod
	def parse ( line: BYTES ) -> Response:
		assert isinstance ( line, bytes_types )
		try:
			code = int ( line[:3] )
			assert 200 <= code <= 599, f'invalid {code=}'
			intermediate = line[3:4]
			text = b2s ( line[4:], 'utf-8', 'replace' ).rstrip()
			assert intermediate in ( b' ', b'-', b'\r', b'\n', b'' ), f'invalid {intermediate=}'
		except Exception as e:
			raise Closed ( f'malformed response from server {line=}: {e=}' ) from e
		if intermediate == b'-':
			return IntermediateResponse ( code, text )
		if code < 400:
			return SuccessResponse ( code, text )
		return ErrorResponse ( code, text )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.code!r}, {", ".join(map(repr,self.lines))})'


class SuccessResponse ( Response ):
	def __init__ ( self, code: int, *lines: str ) -> None:
		assert 200 <= code < 400
		super().__init__ ( code, *lines )
	def is_success ( self ) -> bool:
		return True


class ErrorResponse ( Response ):
	def __init__ ( self, code: int, *lines: str ) -> None:
		assert 400 <= code <= 599
		super().__init__ ( code, *lines )
	def is_success ( self ) -> bool:
		return False


class IntermediateResponse ( Response ):
	def is_success ( self ) -> bool:
		return True


class EhloResponse ( SuccessResponse ):
	esmtp_auth: Set[str] # AUTH mechanisms get parsed and stored here
	esmtp_features: Dict[str,str] # all other features documented here


client_util = ClientUtil ( Response.parse )

#endregion
#region EVENTS ----------------------------------------------------------------

def ResponseEvent ( code: int, *lines: str ) -> SendDataEvent:
	''' frame a reply, multi-line replies use "<code>-" on all but the last line '''
	seps = [ '-' ] * len ( lines )
	seps[-1] = ' '
	return SendDataEvent ( s2b ( ''.join (
		f'{code}{sep}{line}\r\n'
		for sep, line in zip ( seps, lines )
	), 'utf-8' ) )


class AcceptRejectEvent ( Event ):
	success_code: int
	success_message: str
	error_code: int
	error_message: str

	def __init__ ( self ) -> None:
		self._acceptance: Opt[bool] = None
		self._code: int = self.error_code
		self._message: str = self.error_message

	def accept ( self ) -> None:
		self._acceptance = True
		self._code = self.success_code
		self._message = self.success_message

	def reject ( self, code: Opt[int] = None, message: Opt[str] = None ) -> None:
		log = logger.getChild ( 'AcceptRejectEvent.reject' )
		self._acceptance = False
		self._code = self.error_code
		self._message = self.error_message
		if code is not None:
			if not isinstance ( code, int ) or code < 400 or code > 599:
				log.error ( f'invalid error-{code=}' )
			else:
				self._code = code
		if message is not None:
			if not isinstance ( message, str ) or _r_eol.search ( message ):
				log.error ( f'invalid error-{message=}' )
			else:
				self._message = message

	def _accepted ( self ) -> Tuple[bool,int,str]:
		assert self._acceptance is not None, f'you must call .accept() or .reject() on when passed a {type(self).__module__}.{type(self).__name__} object'
		return self._acceptance, self._code, self._message

	def __repr__ ( self ) -> str:
		cls = type ( self )
		args = ', '.join ( f'{k}={getattr(self,k)!r}' for k in (
			'_acceptance',
			'_code',
			'_message',
		) )
		return f'{cls.__module__}.{cls.__name__}({args})'


class GreetingAcceptEvent ( AcceptRejectEvent ):
	success_code = 220
	error_code = 421
	error_message = 'Too busy to accept mail right now'

	def __init__ ( self, server_hostname: str ) -> None:
		self.success_message = f'{server_hostname} SMTP service ready.'
		super().__init__()


class CompleteEvent ( AcceptRejectEvent ):
	''' a DATA transfer reached its sentinel line; the handler ingests the message and accepts or rejects it '''
	success_code = 250
	success_message = 'Message sent'
	error_code = 451
	error_message = 'Error in processing email'

	def __init__ ( self,
		mail_from: Opt[str],
		rcpt_to: Seq[str],
		data: bytes,
		*,
		peer: str = 'unknown',
		client_hostname: str = '',
		server_hostname: str = 'localhost',
	) -> None:
		super().__init__()
		self.mail_from = mail_from
		self.rcpt_to = rcpt_to
		self.data = data
		self.peer = peer
		self.client_hostname = client_hostname
		self.server_hostname = server_hostname

#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( RequestT[ResponseType] ):
	def _client_protocol ( self, client: ClientProtocol ) -> RequestProtocolGenerator:
		assert isinstance ( client, Client )
		yield from self.client_protocol ( client )

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.client_protocol()' )

	def _server_protocol ( self, server: ServerProtocol, argtext: str ) -> RequestProtocolGenerator:
		assert isinstance ( server, Server )
		yield from self.server_protocol ( server, argtext )

	@abstractmethod
	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.server_protocol()' )


_request_verbs: Dict[str,Type[Request]] = {}

def request_verb ( verb: str ) -> Callable[[Type[Request]],Type[Request]]:
	def registrar ( cls: Type[Request] ) -> Type[Request]:
		assert verb == verb.upper() and ' ' not in verb and len ( verb ) <= 71, f'invalid request {verb=}'
		assert verb not in _request_verbs, f'duplicate request verb {verb!r}'
		_request_verbs[verb] = cls
		return cls
	return registrar


class GreetingRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.recv_done()

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		event = GreetingAcceptEvent ( server.hostname )
		yield event
		accepted, code, message = event._accepted()
		yield ResponseEvent ( code, message )
		if not accepted:
			raise Closed ( 'greeting rejected' )


@request_verb ( 'HELO' )
class HeloRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, domain: str ) -> None:
		self.domain = str ( domain ).strip()
		assert len ( self.domain ) > 0

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( f'HELO {self.domain}\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		# the argument has no effect on the session beyond the Received: header
		server.client_hostname = argtext
		yield ResponseEvent ( 250, f'Hello, welcome to {server.hostname}!' )


@request_verb ( 'EHLO' )
class EhloRequest ( Request[EhloResponse] ):
	responsecls = EhloResponse

	def __init__ ( self, domain: str ) -> None:
		self.domain = str ( domain ).strip()
		assert len ( self.domain ) > 0

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( f'EHLO {self.domain}\r\n' )
		event = NeedDataEvent()
		lines: List[str] = []

		esmtp_features: Dict[str,str] = {}
		esmtp_auth: Set[str] = set()

		while True:
			yield from client_util.recv_ok ( event )
			tmp = event.response
			assert isinstance ( tmp, Response )
			lines.append ( tmp.lines[0] )
			if isinstance ( tmp, SuccessResponse ):
				for line in lines[1:]:
					if line.startswith ( 'AUTH ' ):
						esmtp_auth.update ( line.split ( ' ' )[1:] )
					else:
						name, *args = line.split ( ' ', 1 )
						esmtp_features[name] = args[0] if args else ''
				r = EhloResponse ( tmp.code, *lines )
				r.esmtp_features = esmtp_features
				r.esmtp_auth = esmtp_auth
				raise r

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		server.client_hostname = argtext
		yield ResponseEvent ( 250, f'{server.hostname} - It is OK.', *server.capabilities() )


@request_verb ( 'MAIL' )
class MailFromRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, mail_from: str ) -> None:
		self.mail_from = str ( mail_from ).strip()
		assert len ( self.mail_from ) > 0

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( f'MAIL FROM:<{self.mail_from}>\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'MailFromRequest.server_protocol' )
		if not argtext.strip():
			raise ResponseEvent ( 501, 'Invisible user are not welcome!' )
		x = address.extract ( argtext, 'FROM:' )
		mail_from = x.first()
		if mail_from is None:
			raise ResponseEvent ( 501, 'Syntax: MAIL FROM:<address>' )
		if len ( x.addresses ) > 1:
			log.debug ( f'ignoring extra sender addresses {x.addresses[1:]!r}' )
		server.mail_from = mail_from
		if not x.prefix_ok:
			# lenient: the sender sticks even though the command is reported as bad
			log.warning ( f'MAIL argument does not start with FROM: {argtext=}' )
			raise ResponseEvent ( 500, '5.5.2 Unknown command' )
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'RCPT' )
class RcptToRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, rcpt_to: str ) -> None:
		self.rcpt_to = str ( rcpt_to ).strip()
		assert len ( self.rcpt_to ) > 0

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( f'RCPT TO:<{self.rcpt_to}>\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'RcptToRequest.server_protocol' )
		if not argtext.strip():
			raise ResponseEvent ( 501, 'Invisible user are not welcome!' )
		x = address.extract ( argtext, 'TO:' )
		if not x.addresses:
			raise ResponseEvent ( 501, 'Syntax: RCPT TO:<address>' )
		server.rcpt_to = list ( x.addresses ) # replaces, never appends
		if not x.prefix_ok:
			log.warning ( f'RCPT argument does not start with TO: {argtext=}' )
			raise ResponseEvent ( 500, '5.5.2 Unknown command' )
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'DATA' )
class DataRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, payload: bytes ) -> None:
		assert isinstance ( payload, bytes_types ) and len ( payload ) > 0
		self.payload: bytes = bytes ( payload ) # client side only, the server accumulates into Server.data

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_ok ( 'DATA\r\n' )
		payload = _r_line_dot.sub ( b'..', self.payload ) # RFC 5321 4.5.2
		if not payload.endswith ( b'\n' ):
			payload += b'\r\n'
		yield SendDataEvent ( payload )
		yield from client_util.send_recv_done ( '.\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'DataRequest.server_protocol' )
		yield ResponseEvent ( 354, 'Enter mail, end with . on a line by itself' )
		server.state = SessionState.IN_DATA
		oversize = False
		event1 = NeedDataEvent()
		while True:
			yield from event1.go()
			line = event1.data or b''
			if line in SENTINELS:
				break
			if server.dot_unstuffing and line[:1] == b'.':
				line = line[1:]
			if oversize:
				continue
			if len ( server.data ) + len ( line ) > server._MAXDATA:
				log.warning ( f'message exceeds {server._MAXDATA} bytes, discarding' )
				oversize = True
				server.data = bytearray()
				continue
			server.data += line

		if oversize:
			server.reset()
			raise ResponseEvent ( 552, 'Message size exceeds fixed maximum message size' )

		event2 = CompleteEvent ( server.mail_from, server.rcpt_to, bytes ( server.data ),
			peer = server.peer,
			client_hostname = server.client_hostname,
			server_hostname = server.hostname,
		)
		server.reset()
		try:
			yield event2
			_, code, message = event2._accepted()
		except Exception:
			# reply 451 and keep the connection
			log.exception ( 'message processing failed:' )
			code, message = CompleteEvent.error_code, CompleteEvent.error_message
		yield ResponseEvent ( code, message )


@request_verb ( 'RSET' )
class RsetRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( 'RSET\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		server.reset()
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'NOOP' )
class NoOpRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( 'NOOP\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'HELP' )
class HelpRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 214, 'no help and support' )


@request_verb ( 'VRFY' )
@request_verb ( 'EXPN' )
class ExpnVrfyRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 502, 'no support' )


@request_verb ( 'STARTTLS' )
@request_verb ( 'AUTH' )
class NoUpgradeRequest ( Request[SuccessResponse] ):
	# accepted for the benefit of clients that insist, but nothing is negotiated or checked
	responsecls = SuccessResponse

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'GET' )
@request_verb ( 'POST' )
@request_verb ( 'CONNECT' )
class MisdirectedRequest ( Request[SuccessResponse] ):
	# http clients and proxies pointed at the wrong port
	responsecls = SuccessResponse

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'MisdirectedRequest.server_protocol' )
		log.info ( f'ignoring non-mail traffic from {server.peer}' )
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'QUIT' )
class QuitRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send_recv_done ( 'QUIT\r\n' )

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 221, 'BYE' )
		raise Closed ( 'QUIT' )

#endregion
#region SERVER ----------------------------------------------------------------

class SessionState ( enum.Enum ):
	READY = 'ready'
	IN_DATA = 'in-data'


class Command:
	def __init__ ( self, verb: str, argument: Opt[str] ) -> None:
		self.verb = verb
		self.argument = argument

	@classmethod
	def parse ( cls, line: BYTES ) -> Command:
		m = _r_command.match ( b2s ( line, 'utf-8', 'replace' ).strip() )
		assert m is not None # the pattern matches any string
		verb, argument = m.groups()
		return cls ( verb.upper(), argument ) # RFC5321#2.4 command verbs are not case-sensitive

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.verb!r}, {self.argument!r})'


class Server ( ServerProtocol ):
	'''
	Per-connection session. Commands are accepted in any order: nothing is
	gated on HELO, and DATA does not insist on MAIL or RCPT first.
	'''
	_MAXLINE = 65536
	_MAXDATA = 32 * 1024 * 1024
	dot_unstuffing: bool = False # RFC 5321 4.5.2, off to keep stored payloads verbatim
	esmtp_features: Seq[str] = (
		'8BITMIME',
		'PIPELINING',
		'SMTPUTF8',
		'AUTH LOGIN PLAIN CRAM-MD5',
		'SIZE',
		'STARTTLS',
		'HELP',
	)

	client_hostname: str = ''
	mail_from: Opt[str]
	rcpt_to: List[str]
	data: bytearray
	state: SessionState

	def startup ( self ) -> Iterator[Event]:
		self.request = GreetingRequest()
		self.request_protocol = self.request.server_protocol ( self, '' )
		yield from self._run_protocol()

	def reset ( self ) -> None:
		self.mail_from = None
		self.rcpt_to = []
		self.data = bytearray()
		self.state = SessionState.READY

	def capabilities ( self ) -> List[str]:
		return [
			f'SIZE {self._MAXDATA}' if feature == 'SIZE' else feature
			for feature in self.esmtp_features
		]

	def _parse_request_line ( self, line: bytes ) -> Tuple[Opt[Type[BaseRequest]],str]:
		log = logger.getChild ( 'Server._parse_request_line' )
		command = Command.parse ( line )
		requestcls = _request_verbs.get ( command.verb )
		if requestcls is None:
			log.debug ( f'unrecognized {command=}' )
		return requestcls, command.argument or ''

	def _error_invalid_command ( self ) -> Event:
		return ResponseEvent ( 500, '5.5.1 Unknown command' )

#endregion
#region CLIENT ----------------------------------------------------------------

class Client ( ClientProtocol ):
	_MAXLINE = Server._MAXLINE

#endregion
