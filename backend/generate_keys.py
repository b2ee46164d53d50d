import os
import secrets

from cryptography.fernet import Fernet

# Generate secrets
generated = {
    "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
    "OAUTH_STATE_SECRET": secrets.token_urlsafe(32),
    "GOOGLE_ADS_WEBHOOK_SECRET": secrets.token_urlsafe(32),
    "META_WEBHOOK_SECRET": secrets.token_urlsafe(32),
}

for name in generated:
    print(f"Generated {name}")

env_path = ".env"

existing = []
if os.path.exists(env_path):
    with open(env_path, "r") as f:
        existing = f.read().splitlines()

# Replace lines for generated keys, keep everything else
new_lines = []
for line in existing:
    name = line.split("=", 1)[0].strip()
    if name in generated:
        new_lines.append(f"{name}={generated.pop(name)}")
    else:
        new_lines.append(line)
for name, value in generated.items():
    new_lines.append(f"{name}={value}")

with open(env_path, "w") as f:
    f.write("\n".join(new_lines) + "\n")

print(f"Successfully wrote to {env_path}")
