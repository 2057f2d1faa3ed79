# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - snapshot.py: per-account financial snapshot (SQLAlchemy provider)
#   - budget.py: housing / fixed-cost share check, no LLM involved
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - channel.py: cancellation token and the bounded SSE session channel
# =============================================================================
