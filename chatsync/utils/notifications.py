import asyncio
import json
import logging
from typing import Dict, List, Optional

from pyfcm import FCMNotification
from pyfcm.errors import FCMNotRegisteredError

from chatsync.config import get_settings


logger = logging.getLogger(__name__)


class NoopPush:

    enabled = False

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[dict] = None) -> List[str]:
        return []


class FcmPush:

    enabled = True

    def __init__(self, service_account_file: str, project_id: str) -> None:
        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[dict] = None) -> List[str]:
        """Push to every token; returns the tokens FCM reported as unregistered."""
        # FCM data payloads only carry string values
        payload = {k: str(v) for k, v in (data or {}).items()}
        stale = []
        for token in tokens:
            try:
                # pyfcm is sync
                await asyncio.to_thread(
                    self._client.notify,
                    fcm_token=token,
                    notification_title=title,
                    notification_body=body,
                    data_payload=payload,
                )
            except FCMNotRegisteredError:
                stale.append(token)
            except Exception:
                logger.exception("FCM push failed")
        return stale


_push = None


def get_push():
    global _push
    if _push is not None:
        return _push
    settings = get_settings()
    if settings.fcm_service_account_file and settings.fcm_project_id:
        _push = FcmPush(settings.fcm_service_account_file, settings.fcm_project_id)
    else:
        logger.info("FCM not configured, push notifications disabled")
        _push = NoopPush()
    return _push


class Notifier:
    """Fire-immediately notifications for one user.

    The in-app frame goes only to the socket the notifier is bound to. Pushes
    go to the user's registered devices once per ``dedupe_key``, across all
    of the user's sockets.
    """

    def __init__(self, send_frame=None, push=None, device_repo=None, markers=None) -> None:
        self._send_frame = send_frame
        self._push = push or NoopPush()
        self._device_repo = device_repo
        self._markers = markers

    def for_socket(self, send_frame) -> "Notifier":
        return Notifier(send_frame=send_frame, push=self._push, device_repo=self._device_repo, markers=self._markers)

    async def schedule(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
        dedupe_key: Optional[str] = None,
    ) -> None:
        if self._send_frame is not None:
            frame = json.dumps({"type": "notification", "title": title, "body": body, "data": data or {}})
            try:
                await self._send_frame(frame)
            except Exception:
                logger.exception("Error delivering in-app notification to %s", user_id)

        if not getattr(self._push, "enabled", False) or self._device_repo is None:
            return
        try:
            if dedupe_key is not None and self._markers is not None:
                if not await self._markers.claim(user_id, dedupe_key):
                    logger.debug("Push %s already sent to %s", dedupe_key, user_id)
                    return
            tokens = await self._device_repo.get_tokens(user_id, platform="fcm")
            stale = await self._push.send_fcm(tokens, title, body, data)
            for token in stale:
                await self._device_repo.remove_token(token)
        except Exception:
            logger.exception("Error scheduling push notification for %s", user_id)
