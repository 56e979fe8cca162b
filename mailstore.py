from __future__ import annotations

# python imports:
import logging
from pathlib import Path
import time
from typing import Iterator, Union

logger = logging.getLogger ( __name__ )

PATH = Union[str,Path]


class MailError ( Exception ):
	pass

class ParseError ( MailError ):
	pass

class ExtractionError ( MailError ):
	pass

class PersistenceError ( MailError ):
	pass


class MailStore:
	'''
	Two flat directories: one file per received message and one file per
	extracted attachment. Files are only ever created, never rewritten.
	'''
	max_collisions: int = 100
	max_name: int = 255 # bytes in one path component

	def __init__ ( self,
		messages_dir: PATH = 'emails',
		attachments_dir: PATH = 'attachments',
	) -> None:
		self.messages_dir = Path ( messages_dir )
		self.attachments_dir = Path ( attachments_dir )

	def write_record ( self, content: bytes ) -> Path:
		ns = time.time_ns()
		return self._create ( self.messages_dir, _names ( f'email_{ns}', '.eml' ), content )

	def write_attachment ( self, timestamp: str, index: int, filename: str, content: bytes ) -> Path:
		stem, dot, ext = filename.rpartition ( '.' )
		if not stem: # no extension, or a dotfile
			stem, dot, ext = filename, '', ''
		prefix = f'{timestamp}_{index}_'
		# leave room for the prefix and the -N of a collision
		room = self.max_name - _size ( prefix ) - len ( f'-{self.max_collisions}' )
		if _size ( dot + ext ) >= room:
			stem, dot, ext = filename, '', ''
		stem = _truncate ( stem, room - _size ( dot + ext ) )
		names = _names ( f'{prefix}{stem}', f'{dot}{ext}' )
		return self._create ( self.attachments_dir, names, content )

	def _create ( self, directory: Path, names: Iterator[str], content: bytes ) -> Path:
		log = logger.getChild ( 'MailStore._create' )
		try:
			directory.mkdir ( parents = True, exist_ok = True )
		except OSError as e:
			raise PersistenceError ( f'unable to create {str(directory)!r}: {e!r}' ) from e
		for _, name in zip ( range ( self.max_collisions ), names ):
			path = directory / name
			try:
				with path.open ( 'xb' ) as f:
					f.write ( content )
			except FileExistsError:
				log.debug ( f'{str(path)!r} already exists, trying another name' )
				continue
			except ( OSError, ValueError ) as e:
				raise PersistenceError ( f'unable to write {str(path)!r}: {e!r}' ) from e
			log.debug ( f'wrote {len(content)} bytes to {str(path)!r}' )
			return path
		raise PersistenceError ( f'unable to find an unused file name in {str(directory)!r}' )


def _size ( text: str ) -> int:
	return len ( text.encode ( 'utf-8', 'surrogateescape' ) )


def _truncate ( text: str, limit: int ) -> str:
	encoded = text.encode ( 'utf-8', 'surrogateescape' )
	if len ( encoded ) <= limit:
		return text
	# never cut a multi-byte character in half
	return encoded[:limit].decode ( 'utf-8', 'ignore' )


def _names ( stem: str, suffix: str ) -> Iterator[str]:
	yield f'{stem}{suffix}'
	n = 1
	while True:
		yield f'{stem}-{n}{suffix}'
		n += 1
