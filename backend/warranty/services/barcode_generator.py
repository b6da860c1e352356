# Overview: Service-layer operations for secure barcode generation; draws CSPRNG candidates and retries on collision.

"""
Secure Barcode Generator

ALGORITHM (single barcode):
1. Draw random_length bytes from the CSPRNG and fold each byte modulo 32
   into the alphabet. 256 is a multiple of 32, so the fold is unbiased.
2. Compose REX + YY + random part (barcode_codec).
3. Check uniqueness against the store. On success persist with
   generation_attempt and collision_checked=True.
4. On collision log a BarcodeCollision and retry, up to max_retries.
   Exhaustion raises GenerationExhausted.

A unique-constraint violation on insert is a collision observed late and
consumes an attempt like any other collision.

INJECTION:
- rng: callable(n) -> bytes, defaults to secrets.token_bytes
- now: naive UTC datetime, defaults to utcnow()
"""

from __future__ import annotations

import secrets
from dataclasses import asdict, dataclass
from typing import Callable

from flask import current_app, has_app_context

from ..models import WarrantyBarcode
from . import barcode_codec, barcode_store
from warranty.errors import DuplicateKey, GenerationExhausted, InternalError, ValidationError
from warranty.time_utils import utcnow


GENERATION_METHOD = "CSPRNG"

RandomSource = Callable[[int], bytes]


@dataclass(frozen=True)
class GeneratorConfig:
    alphabet: str = barcode_codec.ALPHABET
    random_length: int = barcode_codec.RANDOM_LENGTH
    max_retries: int = 3
    collision_warn_pct: float = 0.01
    collision_critical_pct: float = 0.1
    qr_host: str = "example.com"

    def __post_init__(self):
        if len(self.alphabet) != 32 or len(set(self.alphabet)) != 32:
            raise ValueError("alphabet must contain 32 distinct symbols")
        if barcode_codec.CONFUSABLES & set(self.alphabet):
            raise ValueError("alphabet must not contain I, O, 1 or 0")
        if self.random_length != barcode_codec.RANDOM_LENGTH:
            raise ValueError(f"random_length must be {barcode_codec.RANDOM_LENGTH}")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if not 0 <= self.collision_warn_pct <= self.collision_critical_pct:
            raise ValueError("collision thresholds must satisfy 0 <= warn <= critical")

    @classmethod
    def from_app_config(cls, config) -> "GeneratorConfig":
        return cls(
            max_retries=int(config.get("BARCODE_MAX_RETRIES", 3)),
            collision_warn_pct=float(config.get("BARCODE_COLLISION_WARN_PCT", 0.01)),
            collision_critical_pct=float(config.get("BARCODE_COLLISION_CRITICAL_PCT", 0.1)),
            qr_host=config.get("WARRANTY_QR_HOST", "example.com"),
        )

    @property
    def total_combinations(self) -> int:
        return len(self.alphabet) ** self.random_length

    @property
    def entropy_bits(self) -> int:
        return barcode_codec.entropy_bits(self.alphabet, self.random_length)


def current_config() -> GeneratorConfig:
    if has_app_context():
        return GeneratorConfig.from_app_config(current_app.config)
    return GeneratorConfig()


def describe(config: GeneratorConfig | None = None) -> dict:
    """Human-readable report of the generator's format and security parameters."""
    cfg = config or current_config()
    report = asdict(cfg)
    report.update({
        "format": "REX[YY][RANDOM_12]",
        "generation_method": GENERATION_METHOD,
        "bits_per_char": cfg.entropy_bits // cfg.random_length,
        "total_entropy_bits": cfg.entropy_bits,
        "total_combinations": cfg.total_combinations,
    })
    return report


def draw_random_part(rng: RandomSource, config: GeneratorConfig) -> str:
    raw = rng(config.random_length)
    if len(raw) != config.random_length:
        raise InternalError(
            "Random source returned the wrong number of bytes",
            expected=config.random_length,
            actual=len(raw),
        )
    size = len(config.alphabet)
    return "".join(config.alphabet[b % size] for b in raw)


def draw_candidate(now, rng: RandomSource, config: GeneratorConfig) -> str:
    return barcode_codec.format_barcode(now, draw_random_part(rng, config))


def record_collision(candidate: str, attempt: int, batch_id: int | None, now) -> None:
    barcode_store.log_collision(candidate, attempt, batch_id, now=now)
    current_app.logger.warning(
        "Barcode collision detected: %s (attempt %d, batch %s)", candidate, attempt, batch_id
    )


def draw_unique_number(
    *,
    now,
    rng: RandomSource,
    config: GeneratorConfig,
    batch_id: int | None = None,
    pending: set[str] | None = None,
) -> tuple[str, int]:
    """
    Draw candidates until one is free in the store and not already
    reserved by the caller (pending). Returns (barcode_number, attempt).
    """
    pending = pending if pending is not None else set()
    for attempt in range(1, config.max_retries + 1):
        candidate = draw_candidate(now, rng, config)
        if candidate in pending or not barcode_store.is_unique(candidate):
            record_collision(candidate, attempt, batch_id, now)
            continue
        return candidate, attempt

    current_app.logger.error(
        "Barcode generation exhausted after %d attempts (batch %s)",
        config.max_retries,
        batch_id,
    )
    raise GenerationExhausted(config.max_retries, batch_id=batch_id)


def validate_generation_request(
    product_id: int, storefront_id: int, created_by: int, warranty_period_months: int
) -> None:
    if not product_id:
        raise ValidationError("product_id is required", field="product_id")
    if not storefront_id:
        raise ValidationError("storefront_id is required", field="storefront_id")
    if not created_by:
        raise ValidationError("created_by is required", field="created_by")
    if (
        isinstance(warranty_period_months, bool)
        or not isinstance(warranty_period_months, int)
        or warranty_period_months < 1
    ):
        raise ValidationError(
            "warranty_period_months must be a positive integer",
            field="warranty_period_months",
            value=warranty_period_months,
        )


def build_barcode(
    barcode_number: str,
    *,
    attempt: int,
    product_id: int,
    storefront_id: int,
    created_by: int,
    warranty_period_months: int,
    now,
    config: GeneratorConfig,
    batch_id: int | None = None,
    batch_number: str | None = None,
) -> WarrantyBarcode:
    return WarrantyBarcode(
        barcode_number=barcode_number,
        qr_code_data=barcode_codec.qr_payload(barcode_number, config.qr_host),
        storefront_id=storefront_id,
        product_id=product_id,
        generated_at=now,
        generation_method=GENERATION_METHOD,
        entropy_bits=config.entropy_bits,
        generation_attempt=attempt,
        collision_checked=True,
        batch_id=batch_id,
        batch_number=batch_number,
        status="generated",
        warranty_period_months=warranty_period_months,
        created_by=created_by,
    )


def generate_barcode(
    product_id: int,
    storefront_id: int,
    created_by: int,
    warranty_period_months: int,
    *,
    rng: RandomSource | None = None,
    now=None,
    config: GeneratorConfig | None = None,
) -> WarrantyBarcode:
    """
    Generate and persist one barcode.

    Raises:
        ValidationError: bad input (warranty period < 1, missing ids)
        GenerationExhausted: max_retries collisions in a row
    """
    validate_generation_request(product_id, storefront_id, created_by, warranty_period_months)
    cfg = config or current_config()
    rng = rng or secrets.token_bytes
    now = now or utcnow()

    for attempt in range(1, cfg.max_retries + 1):
        candidate = draw_candidate(now, rng, cfg)
        if not barcode_store.is_unique(candidate):
            record_collision(candidate, attempt, None, now)
            continue

        barcode = build_barcode(
            candidate,
            attempt=attempt,
            product_id=product_id,
            storefront_id=storefront_id,
            created_by=created_by,
            warranty_period_months=warranty_period_months,
            now=now,
            config=cfg,
        )
        try:
            return barcode_store.insert(barcode)
        except DuplicateKey:
            record_collision(candidate, attempt, None, now)

    current_app.logger.error(
        "Barcode generation exhausted after %d attempts (product %s, storefront %s)",
        cfg.max_retries,
        product_id,
        storefront_id,
    )
    raise GenerationExhausted(cfg.max_retries)
