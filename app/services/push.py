# app/services/push.py
"""Push notification delivery through the Firebase Cloud Messaging HTTP v1 API."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Dict, List, Optional, Tuple

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from app.services.errors import PushDeliveryError

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
ANDROID_CHANNEL_ID = "kwachatracker_channel"


def _load_service_account_info(credentials_b64: str, credentials_path: str) -> Optional[dict]:
    """Base64 env var wins over the credentials file. Returns None if neither is usable."""
    if credentials_b64:
        try:
            info = json.loads(base64.b64decode(credentials_b64))
        except (binascii.Error, ValueError) as e:
            logger.error("Failed to decode FIREBASE_CREDENTIALS_BASE64: %s", e)
            return None
        logger.info("Using Firebase credentials from environment variable")
        return info

    if credentials_path and os.path.isfile(credentials_path):
        with open(credentials_path, "r", encoding="utf-8") as f:
            info = json.load(f)
        logger.info("Using Firebase credentials from file")
        return info

    return None


def build_message(token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> dict:
    message = {
        "token": token,
        "notification": {"title": title, "body": body},
        "android": {
            "priority": "high",
            "notification": {
                "click_action": "OPEN_MAIN_ACTIVITY",
                "channel_id": ANDROID_CHANNEL_ID,
            },
        },
    }
    if data:
        # FCM data payload values must be strings
        message["data"] = {str(k): str(v) for k, v in data.items()}
    return {"message": message}


class PushDispatcher:
    """
    Sends notifications to device tokens. No retries: a failed send is
    logged and reported to the caller.
    """

    def __init__(self, credentials, project_id: str, http_client: Optional[httpx.Client] = None):
        self.credentials = credentials
        self.project_id = project_id
        self.http = http_client or httpx.Client(timeout=10.0)
        self.url = FCM_SEND_URL.format(project_id=project_id)

    @classmethod
    def from_settings(cls, settings) -> Optional["PushDispatcher"]:
        info = _load_service_account_info(
            settings.firebase_credentials_b64, settings.firebase_credentials_path
        )
        if info is None:
            logger.warning("Firebase credentials not found, push notifications disabled")
            return None
        try:
            credentials = service_account.Credentials.from_service_account_info(
                info, scopes=[FCM_SCOPE]
            )
        except (ValueError, KeyError) as e:
            logger.warning("FCM initialization failed (notifications disabled): %s", e)
            return None
        logger.info("Firebase Cloud Messaging initialized")
        return cls(credentials, info.get("project_id", ""))

    def _auth_headers(self) -> dict:
        if not self.credentials.valid:
            try:
                self.credentials.refresh(Request())
            except GoogleAuthError as e:
                raise PushDeliveryError(f"credential refresh failed: {e}") from e
        return {
            "Authorization": f"Bearer {self.credentials.token}",
            "Content-Type": "application/json",
        }

    def _post(self, headers: dict, payload: dict) -> str:
        try:
            resp = self.http.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PushDeliveryError(f"FCM request failed: {e}") from e
        if resp.status_code != 200:
            raise PushDeliveryError(f"FCM returned status {resp.status_code}: {resp.text}")
        try:
            return resp.json().get("name", "")
        except ValueError:
            return ""

    def send(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> str:
        """Send one notification. Returns the FCM message name; raises PushDeliveryError."""
        try:
            name = self._post(self._auth_headers(), build_message(token, title, body, data))
        except PushDeliveryError as e:
            logger.error("Failed to send notification: %s", e)
            raise
        logger.info("Notification sent: %s", name)
        return name

    def send_multicast(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, int]:
        """
        Send the same notification to many tokens over one authorised session.
        Returns (success_count, failure_count); never raises. If the session
        cannot be authorised every token counts as failed.
        """
        if not tokens:
            return 0, 0

        try:
            headers = self._auth_headers()
        except PushDeliveryError as e:
            logger.error("Failed to send multicast: %s", e)
            return 0, len(tokens)

        success = 0
        failure = 0
        for token in tokens:
            try:
                self._post(headers, build_message(token, title, body, data))
                success += 1
            except PushDeliveryError as e:
                failure += 1
                logger.warning("Multicast delivery failed for one token: %s", e)

        logger.info("Multicast complete: %d sent, %d failed", success, failure)
        return success, failure
