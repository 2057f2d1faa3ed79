# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine/session factory and the ORM models for the
# financial records a snapshot is built from.
#
# Key exports:
#   - create_engine_from_settings / create_session_factory
#   - FixedCost, Income, Asset, Liability, CreditCardTransaction
# =============================================================================
