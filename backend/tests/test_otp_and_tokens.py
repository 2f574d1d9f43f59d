"""One-time codes, session tokens and request throttling."""
import jwt
import pytest

from abuse.rate_limit import SlidingWindowLimiter, any_of, build_otp_throttle, suffix_predicate
from auth.otp import OtpIssuer, RandomCodeSource, StaticCodeSource
from auth.tokens import generate_token, validate_token
from config.settings import get_settings
from core.exceptions import AuthError, InvalidCodeError


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


PHONE = "0501234567"


class TestOtpIssuer:

    def test_random_codes_have_configured_length(self):
        source = RandomCodeSource(length=8)
        codes = {source.generate(PHONE) for _ in range(20)}
        assert all(len(c) == 8 and c.isdigit() for c in codes)

    def test_issue_then_verify_consumes_challenge(self):
        issuer = OtpIssuer(RandomCodeSource())
        code = issuer.issue(PHONE)
        assert issuer.pending(PHONE) is not None
        issuer.verify(PHONE, code)
        assert issuer.pending(PHONE) is None
        with pytest.raises(InvalidCodeError):
            issuer.verify(PHONE, code)

    def test_codes_are_per_identifier(self):
        issuer = OtpIssuer(StaticCodeSource("424242"))
        issuer.issue(PHONE)
        with pytest.raises(InvalidCodeError):
            issuer.verify("0527654321", "424242")

    def test_reissue_replaces_pending_code(self):
        codes = iter(["111111", "222222"])

        class Sequence(StaticCodeSource):
            def generate(self, identifier):
                return next(codes)

        issuer = OtpIssuer(Sequence("unused"))
        issuer.issue(PHONE)
        issuer.issue(PHONE)
        with pytest.raises(InvalidCodeError):
            issuer.verify(PHONE, "111111")
        issuer.verify(PHONE, "222222")

    def test_expired_code_rejected(self):
        clock = FakeClock()
        issuer = OtpIssuer(StaticCodeSource("123456"), ttl_seconds=300, clock=clock)
        issuer.issue(PHONE)
        clock.advance(301)
        with pytest.raises(InvalidCodeError, match="expired"):
            issuer.verify(PHONE, "123456")

    def test_attempts_exhausted_drops_challenge(self):
        issuer = OtpIssuer(StaticCodeSource("123456"), max_attempts=2)
        issuer.issue(PHONE)
        with pytest.raises(InvalidCodeError):
            issuer.verify(PHONE, "000000")
        with pytest.raises(InvalidCodeError, match="Too many"):
            issuer.verify(PHONE, "000000")
        with pytest.raises(InvalidCodeError):
            issuer.verify(PHONE, "123456")

    def test_purge_expired(self):
        clock = FakeClock()
        issuer = OtpIssuer(StaticCodeSource("123456"), ttl_seconds=10, clock=clock)
        issuer.issue(PHONE)
        issuer.issue("0527654321")
        clock.advance(11)
        assert issuer.purge_expired() == 2

    def test_issue_drops_abandoned_challenges(self):
        clock = FakeClock()
        issuer = OtpIssuer(StaticCodeSource("123456"), ttl_seconds=1, clock=clock)
        for i in range(1000):
            issuer.issue(f"05{i:08d}")
        assert issuer.pending_count() == 1000

        clock.advance(10_000)
        issuer.issue(PHONE)
        assert issuer.pending_count() == 1
        assert issuer.pending(PHONE) is not None

    def test_from_settings_uses_static_code(self, monkeypatch):
        monkeypatch.setenv("OTP_STATIC_CODE", "987654")
        get_settings.cache_clear()
        issuer = OtpIssuer.from_settings(get_settings())
        assert issuer.issue(PHONE) == "987654"


class TestTokens:

    def test_round_trip(self):
        token = generate_token(PHONE, "u_0501234567", "professional")
        claims = validate_token(token)
        assert claims.sub == PHONE
        assert claims.user_id == "u_0501234567"
        assert claims.role == "professional"
        assert claims.env == "dev"

    def test_env_mismatch_rejected(self):
        token = generate_token(PHONE, "u_0501234567", "user", env="prod")
        with pytest.raises(AuthError, match="env"):
            validate_token(token)

    def test_expired_token_rejected(self, monkeypatch):
        monkeypatch.setenv("JWT_EXPIRY_SECONDS", "-10")
        get_settings.cache_clear()
        token = generate_token(PHONE, "u_0501234567", "user")
        with pytest.raises(AuthError, match="expired"):
            validate_token(token)

    def test_foreign_signature_rejected(self):
        forged = jwt.encode({"sub": PHONE, "role": "admin"}, "other-secret", algorithm="HS256")
        with pytest.raises(AuthError, match="Invalid token"):
            validate_token(forged)

    def test_missing_secret_fails_closed(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "")
        get_settings.cache_clear()
        with pytest.raises(AuthError, match="not configured"):
            generate_token(PHONE, "u_0501234567", "user")


class TestRateLimit:

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(max_events=2, window_seconds=60, clock=clock)
        assert limiter.check(PHONE) == (True, None)
        assert limiter.check(PHONE) == (True, None)
        allowed, reason = limiter.check(PHONE)
        assert not allowed
        assert "Rate limit exceeded" in reason

        clock.advance(61)
        assert not limiter.is_throttled(PHONE)
        assert limiter.status(PHONE)["remaining"] == 1

    def test_keys_are_independent_and_resettable(self):
        limiter = SlidingWindowLimiter(max_events=1, window_seconds=60)
        assert not limiter.is_throttled(PHONE)
        assert limiter.is_throttled(PHONE)
        assert not limiter.is_throttled("0527654321")
        limiter.reset(PHONE)
        assert not limiter.is_throttled(PHONE)

    def test_idle_keys_are_forgotten(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(max_events=3, window_seconds=60, clock=clock)
        for i in range(1000):
            limiter.check(f"05{i:08d}")
        assert limiter.tracked_keys() == 1000

        clock.advance(61)
        assert limiter.check(PHONE) == (True, None)
        assert limiter.tracked_keys() == 1
        assert limiter.status(PHONE)["current"] == 1

    def test_suffix_predicate(self):
        pred = suffix_predicate("9")
        assert pred("0501234569")
        assert not pred("0501234567")
        assert not suffix_predicate("")("0501234569")

    def test_any_of_short_circuits(self):
        calls = []

        def counting(identifier):
            calls.append(identifier)
            return False

        pred = any_of(lambda _: True, counting)
        assert pred(PHONE)
        assert calls == []

    def test_build_otp_throttle_with_demo_suffix(self, monkeypatch):
        monkeypatch.setenv("OTP_DEMO_THROTTLE_SUFFIX", "9")
        monkeypatch.setenv("OTP_REQUESTS_PER_WINDOW", "1")
        get_settings.cache_clear()
        throttle = build_otp_throttle(get_settings())
        assert throttle("0501234569")
        assert not throttle(PHONE)
        assert throttle(PHONE)
