from __future__ import annotations

# python imports:
import datetime
import email.message
import email.parser
import email.policy
import email.utils
import logging
import os
import re
from pathlib import Path
import time
from typing import Dict, List, Optional as Opt

# naivemail imports:
from mailstore import MailStore, ParseError
import smtp_proto as proto
from util import s2b

logger = logging.getLogger ( __name__ )


class ParsedMessage:
	'''
	Structured view of one received message.

	``message`` is the full MIME tree (with From/To/Subject filled in when the
	client left them out), ``body`` is everything after the header block exactly
	as it was received. ``parse_error`` is set when the payload could not be
	split into headers and body, in which case the other fields are best-effort.
	'''
	def __init__ ( self,
		message: email.message.Message,
		body: bytes,
		record: Path,
		parse_error: Opt[ParseError] = None,
	) -> None:
		self.message = message
		self.body = body
		self.record = record
		self.parse_error = parse_error

	@property
	def headers ( self ) -> Dict[str,List[str]]:
		# keyed by lower-cased name, values in order of appearance
		headers: Dict[str,List[str]] = {}
		for name, value in self.message.items():
			headers.setdefault ( name.lower(), [] ).append ( str ( value ) )
		return headers

	@property
	def subject ( self ) -> str:
		return str ( self.message.get ( 'Subject', '' ) )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(record={str(self.record)!r}, parse_error={self.parse_error!r})'


# the first empty line, or an empty line at the very start when there are no headers
_r_header_end = re.compile ( rb'(?:^|\r?\n)\r?\n' )


def split_body ( raw: bytes ) -> bytes:
	''' everything after the header block, byte for byte; b'' when there is no empty line '''
	m = _r_header_end.search ( raw )
	return raw[m.end():] if m else b''


def _parser() -> email.parser.BytesParser:
	# compat32 keeps payloads as the raw text that was received,
	# nothing gets decoded until we ask for it
	return email.parser.BytesParser ( policy = email.policy.compat32 )


def trace_headers ( envelope: proto.CompleteEvent, now: datetime.datetime ) -> bytes:
	date = email.utils.format_datetime ( now )
	client = envelope.client_hostname or 'unknown'
	message_id = f'<{time.time_ns()}.{os.getpid()}@{envelope.peer}>'
	return s2b ( ''.join ( (
		f'Received: from {client} ({envelope.peer}) by {envelope.server_hostname} (SMTP Server); {date}\r\n',
		f'Date: {date}\r\n',
		f'Message-ID: {message_id}\r\n',
	) ), 'utf-8', 'replace' )


def _set_missing ( message: email.message.Message, name: str, value: str ) -> None:
	log = logger.getChild ( '_set_missing' )
	if str ( message.get ( name, '' ) ).strip():
		return
	log.debug ( f'no {name}: header in message, using {value!r}' )
	del message[name]
	message[name] = value


def decompose ( envelope: proto.CompleteEvent, store: MailStore, now: Opt[datetime.datetime] = None ) -> ParsedMessage:
	''' persist the MessageRecord for `envelope` and return its structured form; raises PersistenceError '''
	log = logger.getChild ( 'decompose' )
	if now is None:
		now = datetime.datetime.now ( datetime.timezone.utc ).astimezone()
	raw = envelope.data

	parse_error: Opt[ParseError] = None
	message = email.message.Message()
	body = b''
	if not raw.strip():
		parse_error = ParseError ( 'empty message' )
	else:
		body = split_body ( raw )
		try:
			message = _parser().parsebytes ( raw )
		except Exception as e:
			log.warning ( f'unable to parse message from {envelope.peer}: {e!r}' )
			parse_error = ParseError ( repr ( e ) )
			message = email.message.Message()
	for defect in message.defects:
		log.debug ( f'message defect: {defect!r}' )

	# the stored record is the client's bytes untouched, headers only get prepended
	record = store.write_record ( trace_headers ( envelope, now ) + raw )

	_set_missing ( message, 'From', envelope.mail_from or '' )
	_set_missing ( message, 'To', ', '.join ( envelope.rcpt_to ) )
	_set_missing ( message, 'Subject', f'[SMTP Server] Message received at {now:%Y-%m-%d %H:%M:%S}' )

	return ParsedMessage ( message, body, record, parse_error )
