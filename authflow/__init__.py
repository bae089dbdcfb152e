"""Client-side authentication orchestration for phone and Google sign-in."""
