"""Outbound voice call transport."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from twilio.base.exceptions import TwilioRestException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client
from twilio.twiml.voice_response import Gather, VoiceResponse

from dosewatch.engine.errors import TransportFailure
from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES
from dosewatch.utils.time_utils import format_duration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallScript:
    """What the reminder call says."""

    patient_name: str
    medicine_name: str
    dosage: str | None
    occurrence_id: int
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES


class VoiceCaller(ABC):
    """Places a reminder call and returns the provider's call id."""

    @abstractmethod
    async def place_call(self, recipient: str, script: CallScript) -> str:
        """Place a call to ``recipient``.

        Raises:
            TransportFailure: If the call could not be placed
        """


def build_twiml(script: CallScript, gather_url: str | None = None) -> str:
    """Render the reminder call as TwiML.

    Keypresses are posted to ``gather_url`` when one is configured.
    """
    dosage = f", {script.dosage}" if script.dosage else ""
    prompt = (
        f"Hello {script.patient_name}. This is your medicine reminder. "
        f"It is time to take {script.medicine_name}{dosage}. "
        "Press 1 if you have taken it. Press 2 if you have not. "
        f"Press 3 to be reminded again in {format_duration(script.snooze_minutes)}."
    )

    response = VoiceResponse()
    if gather_url:
        gather = Gather(
            num_digits=1,
            action=f"{gather_url}?occurrence_id={script.occurrence_id}",
            method="POST",
        )
        gather.say(prompt)
        response.append(gather)
    else:
        response.say(prompt)
    response.say("Goodbye.")
    return str(response)


class TwilioVoiceCaller(VoiceCaller):
    """Voice caller over Twilio Programmable Voice."""

    _client: Client | None = None

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        gather_url: str | None = None,
    ):
        logger.info(f"Using Twilio voice from number {from_number}")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.gather_url = gather_url

    async def place_call(self, recipient: str, script: CallScript) -> str:
        logger.info(f"Calling {recipient} about {script.medicine_name}")
        client = self._use_client()
        try:
            call = await client.calls.create_async(
                to=recipient,
                from_=self.from_number,
                twiml=build_twiml(script, self.gather_url),
            )
        except TwilioRestException as e:
            raise TransportFailure(f"Twilio rejected call to {recipient}: {e}") from e
        except Exception as e:
            raise TransportFailure(f"Call to {recipient} failed: {e}") from e

        if not call.sid:
            raise TransportFailure(f"Twilio returned no call id for {recipient}")
        return call.sid

    def _use_client(self) -> Client:
        if not self._client:
            self._client = Client(
                username=self.account_sid,
                password=self.auth_token,
                http_client=AsyncTwilioHttpClient(timeout=10),
            )
        return self._client
