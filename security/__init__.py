"""Authentication primitives shared by the newsletter app.

Nothing here touches the database: opaque/signed tokens (`tokens`), TOTP
enrollment and checks (`totp`), webhook signatures (`webhook`), sign-in mail
(`email`), request forms (`forms`) and API-key helpers (`utils`).
"""
