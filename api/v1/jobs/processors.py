"""
Job processors registered in the processor registry.

A processor receives the stored job payload and a ``ProcessorContext`` and
returns a short human readable summary that becomes the job result. Raising
marks the job failed and lets the queue redeliver.
"""

import asyncio
from typing import TYPE_CHECKING, Any

from api.config.logging import get_logger
from api.config.settings import Settings
from api.v1.jobs.schemas import SendEmailPayload

if TYPE_CHECKING:
    from api.v1.jobs.worker import ProcessorContext

logger = get_logger(__name__)


class SendEmailProcessor:
    """
    Processor for the ``sendEmail`` job.

    Payload expected:
    {
        "recipient": "someone@example.com",
        "subject": "Hello",
        "body": "optional text"
    }

    Delivery is simulated with a configurable delay.
    """

    payload_model = SendEmailPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def process(self, payload: dict[str, Any], ctx: "ProcessorContext") -> str:
        message = SendEmailPayload.model_validate(payload)

        logger.info("Sending email", recipient=message.recipient)
        await ctx.report_progress({"stage": "sending", "recipient": message.recipient})

        await asyncio.sleep(self.settings.email_send_delay_ms / 1000)

        await ctx.report_progress({"stage": "sent", "recipient": message.recipient})
        return f"Email sent to {message.recipient}"
