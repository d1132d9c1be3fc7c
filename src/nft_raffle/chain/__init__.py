"""External collaborators of the raffle: clock, randomness, prize issuer, value transfer."""
