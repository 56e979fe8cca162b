from __future__ import annotations

# python imports:
import base64
import binascii
import datetime
import email.errors
import email.header
import email.message
import email.utils
import logging
import mimetypes
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Iterator, List, Optional as Opt
import unicodedata

# naivemail imports:
from decompose import ParsedMessage
from mailstore import ExtractionError, MailStore
from util import b2log

logger = logging.getLogger ( __name__ )


class Attachment:
	def __init__ ( self, index: int, filename: str, content_type: str, content: bytes ) -> None:
		self.index = index
		self.filename = filename
		self.content_type = content_type
		self.content = content

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.index!r}, {self.filename!r}, {self.content_type!r}, <{len(self.content)} bytes>)'


def is_attachment ( part: email.message.Message ) -> bool:
	disposition = str ( part.get ( 'Content-Disposition', '' ) ).lower()
	content_type = str ( part.get ( 'Content-Type', '' ) ).strip().lower()
	if 'attachment' in disposition:
		return True
	if content_type.startswith ( 'application/' ):
		return True
	return 'inline' in disposition and bool ( part.get_filename() )


def _decode_rfc2047 ( value: str ) -> str:
	try:
		return str ( email.header.make_header ( email.header.decode_header ( value ) ) )
	except ( email.errors.HeaderParseError, LookupError, UnicodeError ):
		return value


def safe_filename ( name: str ) -> str:
	# control characters (NUL included) never reach the filesystem
	name = ''.join ( c for c in name if unicodedata.category ( c ) not in ( 'Cc', 'Cs' ) )
	# both separators, whatever platform the client was on
	name = PureWindowsPath ( PurePosixPath ( name ).name ).name.strip()
	if not name.strip ( '.' ):
		return ''
	return name


def _utf8_headers ( part: email.message.Message ) -> email.message.Message:
	# raw 8-bit header bytes are held as surrogates and only ever come back
	# out of the part as U+FFFD, read them as utf-8 instead
	headers = email.message.Message()
	for name, value in part.raw_items():
		if isinstance ( value, str ):
			try:
				value = value.encode ( 'ascii', 'surrogateescape' ).decode ( 'utf-8', 'replace' )
			except UnicodeEncodeError:
				pass # already text
		headers[name] = value
	return headers


def resolve_filename ( part: email.message.Message, index: int ) -> str:
	headers = _utf8_headers ( part )
	for candidate in ( headers.get_filename(), headers.get_param ( 'name' ) ):
		if isinstance ( candidate, tuple ): # RFC 2231 value the parser couldn't collapse
			candidate = email.utils.collapse_rfc2231_value ( candidate )
		if candidate:
			name = safe_filename ( _decode_rfc2047 ( str ( candidate ) ) )
			if name:
				return name
	ext = mimetypes.guess_extension ( part.get_content_type() ) or '.bin'
	return f'attachment{index}{ext}'


def raw_content ( part: email.message.Message ) -> bytes:
	payload = part._payload # get_payload() would re-decode 8-bit text with errors='replace'
	if isinstance ( payload, list ): # message/rfc822 and friends
		try:
			return b''.join ( sub.as_bytes() for sub in payload )
		except Exception as e:
			raise ExtractionError ( f'unable to serialize embedded message: {e!r}' ) from e
	if payload is None:
		return b''
	# the parser decoded with surrogateescape, this gets the received bytes back
	return str ( payload ).encode ( 'ascii', 'surrogateescape' )


def decode_content ( part: email.message.Message, index: int ) -> bytes:
	content = raw_content ( part )
	encoding = str ( part.get ( 'Content-Transfer-Encoding', '' ) ).lower()
	if 'base64' in encoding:
		try:
			return base64.b64decode ( content )
		except ( binascii.Error, ValueError ) as e:
			raise ExtractionError ( f'part {index} has malformed base64 content: {e!r}' ) from e
	# quoted-printable and friends are kept exactly as received
	return content


def iter_attachments ( message: email.message.Message ) -> Iterator[Attachment]:
	''' yield the attachment parts of a multipart message in order; raises ExtractionError '''
	log = logger.getChild ( 'iter_attachments' )
	content_type = str ( message.get ( 'Content-Type', '' ) )
	if message.get_content_maintype() != 'multipart':
		raise ExtractionError ( f'not a multipart message: {content_type!r}' )
	boundary = message.get_boundary()
	if not boundary:
		raise ExtractionError ( f'no boundary parameter in {content_type!r}' )
	parts = message.get_payload()
	if not message.is_multipart() or not isinstance ( parts, list ):
		raise ExtractionError ( f'boundary {boundary!r} not found in message body' )
	index = 0
	for n, part in enumerate ( parts ):
		if not is_attachment ( part ):
			if part.is_multipart():
				# nested containers are not descended into
				log.info ( f'skipping nested {part.get_content_type()} part {n}' )
			else:
				text = raw_content ( part )
				log.debug ( f'inline text part {n} ({part.get_content_type()}): {b2log(text)}' )
			continue
		filename = resolve_filename ( part, index )
		yield Attachment ( index, filename, part.get_content_type(), decode_content ( part, index ) )
		index += 1


def extract ( parsed: ParsedMessage, store: MailStore, now: Opt[datetime.datetime] = None ) -> List[Path]:
	'''
	Persist every attachment of `parsed` and return the paths written.

	Structural problems are logged and end the extraction early, keeping
	whatever was already written. PersistenceError propagates.
	'''
	log = logger.getChild ( 'extract' )
	message = parsed.message
	if 'multipart/' not in str ( message.get ( 'Content-Type', '' ) ).lower():
		log.debug ( f'text message: {b2log(parsed.body)}' )
		return []
	if now is None:
		now = datetime.datetime.now()
	timestamp = now.strftime ( '%Y%m%d_%H%M%S' )
	paths: List[Path] = []
	try:
		for attachment in iter_attachments ( message ):
			log.info ( f'found attachment: {attachment.filename!r} (type: {attachment.content_type})' )
			path = store.write_attachment ( timestamp, attachment.index, attachment.filename, attachment.content )
			log.info ( f'attachment saved: {str(path)!r} ({len(attachment.content)} bytes)' )
			paths.append ( path )
	except ExtractionError as e:
		log.error ( f'attachment extraction stopped for {str(parsed.record)!r}: {e}' )
	return paths
