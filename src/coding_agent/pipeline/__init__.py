"""Pipeline coordination: session execution, orchestration and resume.

The coordinator never talks to a model directly. It sequences three agent
roles (planner, coder, reviewer) through ``SessionExecutor``, threads a
``PipelineContext`` from one stage into the next, and writes every
transition to a ``StateStore`` so that ``resume_pipeline`` can rebuild the
context from completed sessions after a crash or a failed stage.
"""
