"""Tests for global configuration module."""

import os
import unittest
from unittest.mock import patch

from vkapi._config import (
    VKAPI,
    ApiConfig,
    CaptchaConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    RateLimitConfig,
    VkApiConfig,
)


class TestDefaults(unittest.TestCase):
    """Tests for default configuration values."""

    def setUp(self):
        VKAPI.reset()

    def tearDown(self):
        VKAPI.reset()

    def test_api_defaults(self):
        """Should return sensible defaults for API config."""
        self.assertEqual(VKAPI.config.api.base_url, "https://api.vk.com/method")
        self.assertEqual(VKAPI.config.api.version, "5.69")
        self.assertEqual(VKAPI.config.api.request_timeout, 30)
        self.assertIsNone(VKAPI.config.api.language)

    def test_rate_limit_defaults_to_three_requests_per_second(self):
        """Should throttle to 3 requests per second by default."""
        self.assertEqual(VKAPI.config.rate_limit.requests_per_second, 3.0)

    def test_captcha_defaults_to_five_recognitions(self):
        """Should request up to 5 CAPTCHA solutions by default."""
        self.assertEqual(VKAPI.config.captcha.max_recognition_count, 5)

    def test_auth_defaults(self):
        """Should return None for application credentials when not configured."""
        self.assertEqual(VKAPI.config.auth.oauth_url, "https://oauth.vk.com/token")
        self.assertIsNone(VKAPI.config.auth.client_id)
        self.assertIsNone(VKAPI.config.auth.client_secret)


class TestVKAPIConfigure(unittest.TestCase):
    """Tests for VKAPI.configure() method."""

    def setUp(self):
        VKAPI.reset()

    def tearDown(self):
        VKAPI.reset()

    def test_configure_api_values(self):
        """Should override API defaults and keep the others."""
        VKAPI.configure(api={"language": "en", "request_timeout": 60})

        self.assertEqual(VKAPI.config.api.language, "en")
        self.assertEqual(VKAPI.config.api.request_timeout, 60)
        self.assertEqual(VKAPI.config.api.version, "5.69")

    def test_configure_returns_instance(self):
        """Should return the configured VkApiConfig instance."""
        result = VKAPI.configure(rate_limit={"requests_per_second": 20})

        self.assertIsInstance(result, VkApiConfig)
        self.assertEqual(result.rate_limit.requests_per_second, 20)
        self.assertEqual(VKAPI.config.rate_limit.requests_per_second, 20)

    def test_configure_ignores_none_values(self):
        """Should ignore None values in overrides."""
        VKAPI.configure(captcha={"max_recognition_count": None})

        self.assertEqual(VKAPI.config.captcha.max_recognition_count, 5)

    def test_configure_fails_with_unknown_field(self):
        """Should fail when an override names an unknown field."""
        with self.assertRaises(ValueError) as ctx:
            VKAPI.configure(api={"unknown_field": 1})

        self.assertIn("unknown_field", str(ctx.exception))

    def test_configure_fails_with_negative_rate(self):
        """Should reject a negative rate limit."""
        with self.assertRaises(ConfigValidationError) as ctx:
            VKAPI.configure(rate_limit={"requests_per_second": -1})

        self.assertEqual(ctx.exception.field, "requests_per_second")
        self.assertEqual(ctx.exception.section, "rate_limit")

    def test_configure_fails_with_unsupported_language(self):
        """Should reject a language VK does not accept."""
        with self.assertRaises(ConfigValidationError):
            VKAPI.configure(api={"language": "xx"})

    def test_configure_fails_with_invalid_base_url(self):
        """Should reject a base URL without scheme."""
        with self.assertRaises(ConfigValidationError):
            VKAPI.configure(api={"base_url": "api.vk.com/method"})

    def test_reset_restores_defaults(self):
        """Should restore defaults after configure()."""
        VKAPI.configure(rate_limit={"requests_per_second": 20})

        VKAPI.reset()

        self.assertEqual(VKAPI.config.rate_limit.requests_per_second, 3.0)


class TestEnvVars(unittest.TestCase):
    """Tests for environment variable override."""

    def setUp(self):
        VKAPI.reset()

    def tearDown(self):
        VKAPI.reset()

    @patch.dict(os.environ, {"VKAPI_API_REQUEST_TIMEOUT": "45"})
    def test_api_env_var_override(self):
        """Should use env var value over defaults."""
        VKAPI.reset()

        self.assertEqual(VKAPI.config.api.request_timeout, 45)

    @patch.dict(os.environ, {"VKAPI_RATE_LIMIT_REQUESTS_PER_SECOND": "2.5"})
    def test_float_env_var_is_converted(self):
        """Should convert float env vars."""
        VKAPI.reset()

        self.assertEqual(VKAPI.config.rate_limit.requests_per_second, 2.5)

    @patch.dict(os.environ, {"VKAPI_AUTH_CLIENT_ID": "123456"})
    def test_client_id_env_var_is_converted_to_int(self):
        """Should convert the application ID to int."""
        VKAPI.reset()

        self.assertEqual(VKAPI.config.auth.client_id, 123456)

    @patch.dict(os.environ, {"VKAPI_CAPTCHA_MAX_RECOGNITION_COUNT": "many"})
    def test_invalid_env_var_raises(self):
        """Should raise ConfigEnvVarError for unparseable values."""
        with self.assertRaises(ConfigEnvVarError) as ctx:
            VKAPI.reset()

        self.assertEqual(ctx.exception.env_var, "VKAPI_CAPTCHA_MAX_RECOGNITION_COUNT")

    @patch.dict(os.environ, {"VKAPI_API_REQUEST_TIMEOUT": "45"})
    def test_configure_values_take_precedence_over_env_vars(self):
        """Should prefer configure() values over env vars."""
        VKAPI.configure(api={"request_timeout": 90})

        self.assertEqual(VKAPI.config.api.request_timeout, 90)

    @patch.dict(os.environ, {"VKAPI_API_REQUEST_TIMEOUT": "45"})
    def test_configure_without_env_override(self):
        """Should ignore env vars when allow_env_override=False."""
        VKAPI.configure(allow_env_override=False)

        self.assertEqual(VKAPI.config.api.request_timeout, 30)


class TestOverridableConfig(unittest.TestCase):
    """Tests for with_overrides() on section dataclasses."""

    def test_with_overrides_returns_new_instance(self):
        config = RateLimitConfig()

        custom = config.with_overrides({"requests_per_second": 20})

        self.assertEqual(custom.requests_per_second, 20)
        self.assertEqual(config.requests_per_second, 3.0)

    def test_with_empty_overrides_returns_same_instance(self):
        config = CaptchaConfig()

        self.assertIs(config.with_overrides({}), config)

    def test_sections_are_frozen(self):
        config = ApiConfig()

        with self.assertRaises(AttributeError):
            config.version = "5.131"  # type: ignore


class TestExplain(unittest.TestCase):
    """Tests for VKAPI.explain()."""

    def setUp(self):
        VKAPI.reset()

    def tearDown(self):
        VKAPI.reset()

    def test_explain_masks_secrets(self):
        """Should never print the application secret."""
        VKAPI.configure(auth={"client_id": 1, "client_secret": "super-secret"})
        lines: list[str] = []

        VKAPI.explain(output=lines.append)

        output = "\n".join(lines)
        self.assertIn("[auth]", output)
        self.assertIn("client_secret", output)
        self.assertNotIn("super-secret", output)
        self.assertIn("********", output)

    def test_explain_lists_every_section(self):
        lines: list[str] = []

        VKAPI.explain(output=lines.append)

        for section in ("[api]", "[auth]", "[rate_limit]", "[captcha]"):
            self.assertIn(section, lines)


if __name__ == "__main__":
    unittest.main()
