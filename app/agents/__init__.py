# =============================================================================
# Agents Package — Multi-Expert Pipeline
# =============================================================================
#   - classifier.py: question type + emotional state (structured output)
#   - router.py: deterministic expert selection from the classification
#   - experts.py: expert registry (prompts and output schemas)
#   - executor.py: runs the selected experts in parallel
#   - synthesizer.py: streams the final answer with tone rules applied
#   - orchestrator.py: LangGraph graph with a cancellation gate per stage
#   - errors.py: failure taxonomy shared by the pipeline
# =============================================================================
