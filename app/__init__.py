# =============================================================================
# Multi-Expert Financial Advisor
# =============================================================================
# Answers a user's question about their own finances. The question is
# classified, routed to a small panel of specialist experts that each return
# structured notes, and a synthesiser streams one answer back over SSE.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (advise stream, account views)
#   ├── agents/       → Classifier, router, expert executor, synthesiser and
#   │                    the LangGraph pipeline that ties them together
#   ├── db/           → Database engine, session factory and ORM models
#   ├── models/       → Pydantic V2 request/response and stream event schemas
#   └── services/     → Snapshot building, budget check, LLM providers and
#                        the per-request SSE channel
# =============================================================================
