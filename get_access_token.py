"""
Link a RunSignUp account via the OAuth Authorization Code Flow

Opens the RunSignUp grant page in a browser, reads the redirect URL (or the
bare code) back from the terminal and saves the resulting tokens to .env.
"""
import os
import sys
import asyncio
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from shared_runsignup import (  # noqa: E402
    AuthManager,
    BrowserAuthorizer,
    ConfigurationError,
    DotenvTokenStore,
    RunSignUpError,
    UserClient,
    get_config,
)
from shared_runsignup.models import AuthorizationOutcome  # noqa: E402
from shared_runsignup.transport import ApiTransport  # noqa: E402


async def run_oauth_flow(auth: AuthManager, users: UserClient) -> bool:
    """Run the OAuth flow with manual code entry"""
    print("=" * 80)
    print("RunSignUp OAuth Flow - Link Account")
    print("=" * 80)
    print()
    print("How this works:")
    print("1. Browser opens to the RunSignUp authorization page")
    print("2. You sign in and grant permissions")
    print("3. RunSignUp redirects to the app's redirect URI (the page may not load - that's OK!)")
    print("4. Copy the full URL from the address bar")
    print("5. Paste it here to save your tokens")
    print()

    result = await auth.authorize()
    if result.outcome is AuthorizationOutcome.CANCELLED:
        print("❌ No code provided")
        return False
    if result.outcome is AuthorizationOutcome.ERROR:
        print(f"❌ Authorization failed: {result.error}")
        return False

    print("Exchanging authorization code for tokens...")
    try:
        if result.access_token:
            credential = auth.accept_implicit_token(result.params)
        else:
            credential = await auth.exchange_code_for_token(result.code)
    except RunSignUpError as e:
        print(f"❌ Failed to get tokens: {e}")
        print()
        print("Common issues:")
        print("- Code expired (they expire quickly, try again)")
        print("- Code was already used (get a new one)")
        print("- Redirect URI differs from the one registered for the OAuth client")
        return False

    print("✓ Tokens saved to .env")
    print(f"  Access token expires: {credential.expires_at:%Y-%m-%d %H:%M} UTC")
    if credential.refresh_token:
        print("✓ Refresh token saved")
    else:
        print("⚠️  No refresh token issued - you will need to link again when it expires")
    print()

    try:
        identity = await users.me()
        print(f"✓ Linked as {identity.first_name} {identity.last_name} <{identity.email}> "
              f"(user {identity.user_id})")
    except RunSignUpError as e:
        print(f"⚠️  Linked, but user details are not available: {e}")

    print()
    print("=" * 80)
    print("SUCCESS!")
    print("=" * 80)
    return True


def main():
    """Main entry point"""
    logging.basicConfig(level=logging.WARNING, format='%(levelname)s %(name)s: %(message)s')
    try:
        config = get_config()
        config.validate()

        auth = AuthManager(DotenvTokenStore(), authorizer=BrowserAuthorizer(), config=config)
        users = UserClient(ApiTransport(auth=auth, config=config))
        success = asyncio.run(run_oauth_flow(auth, users))
        return 0 if success else 1

    except ConfigurationError as e:
        print(f"❌ Configuration Error: {e}")
        print()
        print("Make sure your .env file has:")
        print("  RUNSIGNUP_OAUTH_CLIENT_ID=your_client_id")
        print("  RUNSIGNUP_OAUTH_CLIENT_SECRET=your_client_secret")
        return 1

    except KeyboardInterrupt:
        print("\n\nCancelled by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
