# medtrack/notify.py
import sys, time, logging
from abc import ABC, abstractmethod
from typing import Optional, TextIO

try:
    from jnius import autoclass
except Exception:
    autoclass = None

logger = logging.getLogger("medtrack.notify")

GRANTED = "granted"
DENIED = "denied"
DEFAULT = "default"

class Notifier(ABC):
    """Delivers a reminder to the user.

    System notifications are used once permission is granted; otherwise the
    message falls back to an inline alert. Delivery is fire-and-forget.
    """

    def permission(self) -> str:
        return GRANTED

    def request_permission(self) -> str:
        return self.permission()

    @abstractmethod
    def show(self, title: str, body: str):
        """System notification."""

    @abstractmethod
    def alert(self, title: str, body: str):
        """Fallback shown when notifications are not permitted."""

    def beep(self):
        pass

    def notify(self, title: str, body: str):
        self.beep()
        if self.permission() == GRANTED:
            self.show(title, body)
        else:
            self.alert(title, body)

# -------------------------
# Desktop
# -------------------------
class ConsoleNotifier(Notifier):
    def __init__(self, stream: Optional[TextIO] = None, permission: str = GRANTED, bell: bool = True):
        self.stream = stream or sys.stdout
        self._permission = permission
        self.bell = bell

    def permission(self):
        return self._permission

    def request_permission(self):
        if self._permission == DEFAULT:
            self._permission = GRANTED
        return self._permission

    def _write(self, text: str):
        self.stream.write(text)
        self.stream.flush()

    def show(self, title, body):
        logger.info(f"[notification] {title} - {body}")
        self._write(f"{title}: {body}\n")

    def alert(self, title, body):
        logger.info(f"[alert] {title} - {body}")
        self._write(f"\n{title}\n\n{body}\n\n")

    def beep(self):
        if self.bell:
            self._write("\a")

# -------------------------
# Android (pyjnius)
# -------------------------
class AndroidNotifier(Notifier):
    channel_id = "medtrack_reminders"

    def __init__(self, in_service: bool = False):
        self.in_service = in_service
        self._requested = False

    def _context(self):
        if self.in_service:
            return autoclass("org.kivy.android.PythonService").mService
        return autoclass("org.kivy.android.PythonActivity").mActivity

    def _sdk_int(self) -> int:
        try:
            return int(autoclass("android.os.Build$VERSION").SDK_INT)
        except Exception:
            return 0

    def permission(self):
        if autoclass is None:
            return DENIED
        if self._sdk_int() < 33:
            return GRANTED
        try:
            ContextCompat = autoclass("androidx.core.content.ContextCompat")
            PackageManager = autoclass("android.content.pm.PackageManager")
            Manifest = autoclass("android.Manifest")
            perm = Manifest.permission.POST_NOTIFICATIONS
            if ContextCompat.checkSelfPermission(self._context(), perm) == PackageManager.PERMISSION_GRANTED:
                return GRANTED
        except Exception:
            logger.exception("POST_NOTIFICATIONS check failed")
            return DENIED
        return DENIED if self._requested else DEFAULT

    def request_permission(self):
        if autoclass is None or self.in_service:
            return self.permission()
        if self.permission() == DEFAULT:
            try:
                ActivityCompat = autoclass("androidx.core.app.ActivityCompat")
                Manifest = autoclass("android.Manifest")
                ActivityCompat.requestPermissions(self._context(), [Manifest.permission.POST_NOTIFICATIONS], 2407)
                self._requested = True
                logger.info("requested POST_NOTIFICATIONS permission")
            except Exception:
                logger.exception("POST_NOTIFICATIONS request failed")
        return self.permission()

    def show(self, title, body):
        try:
            ctx = self._context()
            Context = autoclass("android.content.Context")
            NotificationManager = autoclass("android.app.NotificationManager")
            NotificationChannel = autoclass("android.app.NotificationChannel")
            Notification = autoclass("android.app.Notification")

            nm = ctx.getSystemService(Context.NOTIFICATION_SERVICE)
            if self._sdk_int() >= 26:
                ch = NotificationChannel(self.channel_id, "Medicine Reminders", NotificationManager.IMPORTANCE_HIGH)
                ch.setDescription("Dose reminders from medtrack")
                nm.createNotificationChannel(ch)
                builder = Notification.Builder(ctx, self.channel_id)
            else:
                builder = Notification.Builder(ctx)

            builder.setContentTitle(title)
            builder.setContentText(body)
            builder.setSmallIcon(ctx.getApplicationInfo().icon)
            builder.setAutoCancel(True)

            nid = int(time.time()) & 0x7fffffff
            nm.notify(nid, builder.build())
        except Exception:
            logger.exception("system notification failed")

    def alert(self, title, body):
        try:
            Toast = autoclass("android.widget.Toast")
            String = autoclass("java.lang.String")
            Toast.makeText(self._context(), String(f"{title}\n\n{body}"), Toast.LENGTH_LONG).show()
        except Exception:
            logger.exception("inline alert failed")

    def beep(self):
        try:
            ToneGenerator = autoclass("android.media.ToneGenerator")
            AudioManager = autoclass("android.media.AudioManager")
            ToneGenerator(AudioManager.STREAM_NOTIFICATION, 100).startTone(ToneGenerator.TONE_PROP_BEEP, 600)
        except Exception:
            logger.exception("beep failed")

def default_notifier(in_service: bool = False) -> Notifier:
    if autoclass is not None:
        return AndroidNotifier(in_service=in_service)
    return ConsoleNotifier()
