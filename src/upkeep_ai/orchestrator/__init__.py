"""AI task orchestration: registry, executor, fallbacks, audit and feedback.

Call sites never talk to a model directly. They build a typed input, call
`AiGateway.run_task` with a task type, and get back an envelope whose
`output_json` has the same shape whether it came from the model or from the
task's rule-based fallback; only `used_fallback` tells them apart.
Persisting the result and collecting feedback are explicit, separate calls.
"""
