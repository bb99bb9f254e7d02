"""
SIWA - Sign in with Apple account lifecycle client

This package implements the client-side half of "Sign in with Apple": initial
authentication, and voluntary revocation of the user's Apple credentials
("membership withdrawal").

Key Components:
- apple: Protocol-level code for the Apple ID service (nonce, client secret,
  token exchange, token revocation, identity token decoding)
- model: Pipeline run state and the key-value store holding user display data
- app: Configuration, the authorization service and the pipeline orchestrators

Architecture Overview:
1. Sign-in:
   - A nonce is generated and its hash sent with the authorization request
   - The identity provider returns an authorization code and identity token
   - Display fields and the code are stored, a client secret is minted
   - The user's credential state is checked before sign-in completes

2. Withdrawal:
   - The user re-authorizes to obtain a fresh authorization code
   - The code is exchanged for a refresh token
   - A fresh client secret is signed and the refresh token is revoked
   - Completion is signalled only after revocation is confirmed

Each pipeline run is strictly sequential and single-flight: a trigger received
while a run is active is ignored.
"""
