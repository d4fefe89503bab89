import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from pydantic import BaseModel


class SmtpConf(BaseModel):
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str
    from_name: Optional[str] = None
    timeout_seconds: float = 10.0


class SmtpNotifier:
    """
    Sends plain-text email over SMTP.

    smtplib is blocking, so delivery runs in a thread executor. Port 465 uses
    implicit TLS, any other port upgrades with STARTTLS when the server offers it.
    """

    def __init__(self, conf: SmtpConf):
        self._conf = conf

    def _build(self, recipient: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self._conf.from_name, self._conf.from_address)) if self._conf.from_name else self._conf.from_address
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        conf = self._conf
        context = ssl.create_default_context()
        if conf.port == 465:
            server = smtplib.SMTP_SSL(conf.host, conf.port, timeout=conf.timeout_seconds, context=context)
        else:
            server = smtplib.SMTP(conf.host, conf.port, timeout=conf.timeout_seconds)
        with server:
            if conf.port != 465:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=context)
                    server.ehlo()
            if conf.username and conf.password:
                server.login(conf.username, conf.password)
            server.send_message(msg)

    async def send(self, recipient: str, subject: str, body: str) -> None:
        msg = self._build(recipient, subject, body)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._deliver, msg)
