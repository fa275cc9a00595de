"""
rubric_eval: Rubric-based multi-model output evaluation

Fans a batch of test prompts out to several language-model assistants,
scores every candidate output against rubric criteria with an evaluation
model, and reports per-test-case, per-model results.

Main components:
- assignment: Binds each assistant slot to one concrete model per run
- pipeline: Generation/evaluation orchestrator with per-item failure isolation
- scoring: Rubric judge prompt building and reply parsing
- providers: Unified interface for LLM backends (Ollama, Google)
"""

__version__ = "0.1.0"
