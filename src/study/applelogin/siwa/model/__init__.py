"""
Data Models

This package defines the data held by the SIWA client outside of a single
function call.

Key Models:
- pipeline.py: PipelineState and PipelineRun, one execution of a pipeline
- store.py: The key-value store keeping user display data and the most
  recently minted client secret

Nothing in here persists refresh tokens or raw nonces: they live only in the
PipelineRun that produced them.
"""
