"""
Apple ID Integration

This package provides integration with the Apple ID authorization service,
handling the credential exchange pipeline used for sign-in and withdrawal.

Key Components:
- nonce.py: Nonce generation and hashing for replay protection
- jwt.py: Client secret signing and best-effort identity token decoding
- chain.py: Middleware chain for outbound HTTP requests (client auth, metrics)
- token.py: Authorization code to refresh token exchange
- revoke.py: Refresh token revocation
- provider.py: Interface of the native authorization UI collaborator
- errors.py: Error taxonomy shared by all pipeline steps

Apple's token endpoints authenticate the application with a short-lived
ES256-signed client secret, minted immediately before each call that needs it.
"""
