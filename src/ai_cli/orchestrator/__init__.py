"""Backend orchestration for iterative CLI agent runs.

The package is split along the seams of a single run:

- ``backend`` wraps each external CLI tool behind one adapter contract
  (availability probe + one-shot prompt execution) and exposes a fixed
  registry keyed by backend identifier.
- ``completion`` turns free-form backend output into a completion verdict.
- ``loop`` drives prompt -> execute -> detect under timeout, iteration-count
  and stagnation guardrails, returning an immutable ``RunResult``.

Everything else (config resolution, prompt reading, rendering, redaction,
artifact persistence) sits around the loop and only sees finished results.
"""
