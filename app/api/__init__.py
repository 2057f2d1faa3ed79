# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - advise.py: streaming multi-expert answer (POST /advise)
#   - accounts.py: snapshot and budget views of one account
#   - deps.py: dependencies that hand out the startup-built collaborators
# =============================================================================
