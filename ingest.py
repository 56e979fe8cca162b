from __future__ import annotations

# python imports:
import logging

# naivemail imports:
import attachments
from decompose import decompose
from mailstore import MailStore, PersistenceError
import smtp_proto as proto

logger = logging.getLogger ( __name__ )


def ingest ( event: proto.CompleteEvent, store: MailStore ) -> None:
	'''
	Run a completed DATA transfer through the decomposer and attachment
	extractor, then accept or reject `event`. Nothing here closes the
	connection; every failure ends up as a reply code.
	'''
	log = logger.getChild ( 'ingest' )
	try:
		parsed = decompose ( event, store )
		log.info ( f'received mail from={event.mail_from!r} to={event.rcpt_to!r} subject={parsed.subject!r} record={str(parsed.record)!r}' )
		paths = attachments.extract ( parsed, store )
	except PersistenceError as e:
		log.error ( f'unable to store message from {event.peer}: {e}' )
		event.reject ( 451, 'Requested action aborted: local error in processing' )
		return
	if paths:
		log.info ( f'{len(paths)} attachment(s) saved for {str(parsed.record)!r}' )
	if parsed.parse_error is not None:
		log.warning ( f'{str(parsed.record)!r} could not be parsed: {parsed.parse_error}' )
		event.reject() # 451 Error in processing email
		return
	event.accept()
