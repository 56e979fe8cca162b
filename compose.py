from __future__ import annotations

# python imports:
from email.header import Header
import logging
from pathlib import Path
import time
from typing import List, Optional as Opt, Sequence as Seq, Union

# naivemail imports:
from util import b64_lines, s2b

logger = logging.getLogger ( __name__ )

PATH = Union[str,Path]


class OutboundMessage:
	def __init__ ( self,
		mail_from: str,
		rcpt_to: Seq[str],
		subject: str = '',
		body: str = '',
		attachments: Seq[PATH] = (),
	) -> None:
		assert mail_from, f'invalid {mail_from=}'
		assert rcpt_to and not isinstance ( rcpt_to, str ), f'invalid {rcpt_to=}'
		self.mail_from = mail_from
		self.rcpt_to: List[str] = list ( rcpt_to )
		self.subject = subject
		self.body = body
		self.attachments: List[Path] = [ Path ( p ) for p in attachments ]

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(mail_from={self.mail_from!r}, rcpt_to={self.rcpt_to!r}, subject={self.subject!r}, attachments={self.attachments!r})'


def _header_value ( value: str ) -> str:
	if value.isascii():
		return value
	return Header ( value, 'utf-8' ).encode()


def _crlf ( text: str ) -> str:
	return text.replace ( '\r\n', '\n' ).replace ( '\n', '\r\n' )


def serialize ( msg: OutboundMessage, boundary: Opt[str] = None ) -> bytes:
	'''
	Render `msg` as a multipart/mixed payload ready for DATA: a text/plain
	body part followed by one base64 application/octet-stream part per
	attachment file. Attachment files are read here, so a missing file
	raises OSError before anything is sent.
	'''
	log = logger.getChild ( 'serialize' )
	if boundary is None:
		boundary = f'boundary_{time.time_ns()}'
	lines: List[str] = [
		f'From: {msg.mail_from}',
		f'To: {", ".join(msg.rcpt_to)}',
		f'Subject: {_header_value(msg.subject)}',
		'MIME-Version: 1.0',
		f'Content-Type: multipart/mixed; boundary="{boundary}"',
		'',
		f'--{boundary}',
		'Content-Type: text/plain; charset=UTF-8',
		'Content-Transfer-Encoding: 8bit',
		'',
		_crlf ( msg.body ),
	]
	for path in msg.attachments:
		content = path.read_bytes()
		log.debug ( f'attaching {str(path)!r} ({len(content)} bytes)' )
		lines.extend ( (
			f'--{boundary}',
			'Content-Type: application/octet-stream',
			'Content-Transfer-Encoding: base64',
			f'Content-Disposition: attachment; filename="{path.name}"',
			'',
			*b64_lines ( content ),
			'',
		) )
	lines.append ( f'--{boundary}--' )
	return s2b ( '\r\n'.join ( lines ) + '\r\n', 'utf-8' )
