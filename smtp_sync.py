# system imports:
import logging

# naivemail imports:
from compose import OutboundMessage, serialize
from event_handling import SyncClient, SyncServer
import ingest
from mailstore import MailStore
import smtp_proto as proto
from transport import SyncTransport

logger = logging.getLogger ( __name__ )


class Client ( SyncClient ):
	protocls = proto.Client

	def greeting ( self ) -> proto.SuccessResponse:
		return self._request ( proto.GreetingRequest() )

	def helo ( self, local_hostname: str ) -> proto.SuccessResponse:
		return self._request ( proto.HeloRequest ( local_hostname ) )

	def ehlo ( self, local_hostname: str ) -> proto.EhloResponse:
		return self._request ( proto.EhloRequest ( local_hostname ) )

	def mail_from ( self, email: str ) -> proto.SuccessResponse:
		return self._request ( proto.MailFromRequest ( email ) )

	def rcpt_to ( self, email: str ) -> proto.SuccessResponse:
		return self._request ( proto.RcptToRequest ( email ) )

	def data ( self, content: bytes ) -> proto.SuccessResponse:
		return self._request ( proto.DataRequest ( content ) )

	def rset ( self ) -> proto.SuccessResponse:
		return self._request ( proto.RsetRequest() )

	def noop ( self ) -> proto.SuccessResponse:
		return self._request ( proto.NoOpRequest() )

	def quit ( self ) -> proto.SuccessResponse:
		return self._request ( proto.QuitRequest() )

	def send_message ( self, msg: OutboundMessage ) -> proto.SuccessResponse:
		''' one MAIL, one RCPT per recipient, then the serialized message as DATA '''
		log = logger.getChild ( 'Client.send_message' )
		self.mail_from ( msg.mail_from )
		for rcpt in msg.rcpt_to:
			self.rcpt_to ( rcpt )
		r = self.data ( serialize ( msg ) )
		log.debug ( f'{msg!r} -> {r!r}' )
		return r


class Server ( SyncServer ):
	protocls = proto.Server

	def __init__ ( self, transport: SyncTransport, server_hostname: str, store: MailStore ) -> None:
		super().__init__ ( transport, server_hostname )
		self.store = store

	def on_GreetingAcceptEvent ( self, event: proto.GreetingAcceptEvent ) -> None:
		# implementations only need to override this if they want to change the behavior
		event.accept()

	def on_CompleteEvent ( self, event: proto.CompleteEvent ) -> None:
		ingest.ingest ( event, self.store )
