"""Tests for PostHog analytics helper."""

from unittest.mock import MagicMock, patch


class TestPostHogCapture:
    """Test posthog capture helper functions."""

    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog._initialized", True)
    def test_capture_sends_event(self, mock_posthog):
        from xpsync.core.posthog import capture

        capture(user_id="user-123", event="xp_sync_succeeded", properties={"amount": 50})
        mock_posthog.capture.assert_called_once()
        call_kwargs = mock_posthog.capture.call_args
        assert call_kwargs.kwargs["distinct_id"] == "user-123"
        assert call_kwargs.kwargs["event"] == "xp_sync_succeeded"
        assert call_kwargs.kwargs["properties"]["amount"] == 50

    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog._initialized", True)
    def test_capture_without_user_is_anonymous(self, mock_posthog):
        from xpsync.core.posthog import capture

        capture(user_id=None, event="xp_sync_failed")
        call_kwargs = mock_posthog.capture.call_args
        assert call_kwargs.kwargs["distinct_id"] == "anonymous"
        assert call_kwargs.kwargs["properties"] == {}

    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog._initialized", False)
    def test_capture_noop_when_not_initialized(self, mock_posthog):
        from xpsync.core.posthog import capture

        capture(user_id="user-123", event="xp_sync_succeeded")
        mock_posthog.capture.assert_not_called()

    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog._initialized", True)
    def test_capture_swallows_exceptions(self, mock_posthog):
        from xpsync.core.posthog import capture

        mock_posthog.capture.side_effect = Exception("network error")
        # Should not raise
        capture(user_id="user-123", event="xp_sync_succeeded")


class TestPostHogLifecycle:
    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog.get_settings")
    def test_init_skipped_without_key(self, mock_settings, mock_posthog):
        import xpsync.core.posthog as module

        mock_settings.return_value = MagicMock(posthog_enabled=True, posthog_api_key="")
        with patch.object(module, "_initialized", False):
            module.init_posthog()
            assert module._initialized is False

    @patch("xpsync.core.posthog._posthog")
    @patch("xpsync.core.posthog.get_settings")
    def test_init_and_shutdown(self, mock_settings, mock_posthog):
        import xpsync.core.posthog as module

        mock_settings.return_value = MagicMock(
            posthog_enabled=True,
            posthog_api_key="phc_test",
            posthog_host="https://eu.i.posthog.com",
            debug=False,
        )
        with patch.object(module, "_initialized", False):
            module.init_posthog()
            assert module._initialized is True
            assert mock_posthog.api_key == "phc_test"
            assert mock_posthog.host == "https://eu.i.posthog.com"

            module.shutdown_posthog()
            mock_posthog.flush.assert_called_once()
            mock_posthog.shutdown.assert_called_once()
            assert module._initialized is False
