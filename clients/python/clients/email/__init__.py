from .notifier import LogNotifier, Notifier, SentMessage
from .smtp import SmtpConf, SmtpNotifier
