import os
import stat
import sys
import tempfile
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from config import Settings  # noqa: E402
from utils import sign_body  # noqa: E402

SECRET = "It's a Secret to Everybody"


def make_script(directory: str, name: str = "deploy.sh", body: str = "exit 0\n") -> str:
    path = os.path.join(directory, name)
    with open(path, "w") as f:
        f.write("#!/usr/bin/env bash\n")
        f.write(body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR)
    return path


def make_settings(directory: str = None, **overrides) -> Settings:
    if "deploy_targets" not in overrides:
        directory = directory or tempfile.mkdtemp()
        overrides["deploy_targets"] = {"octo-org/octo-repo": make_script(directory)}
    values = {"webhook_secret": SECRET}
    values.update(overrides)
    return Settings(**values)


def push_payload(
    repo: str = "octo-org/octo-repo",
    ref: str = "refs/heads/main",
    commit: str = "6dcb09b5b57875f334f61aebed695e2e4193db5e",
    pusher: str = "octocat",
) -> dict:
    owner, _, name = repo.partition("/")
    return {
        "ref": ref,
        "before": "0000000000000000000000000000000000000000",
        "after": commit,
        "repository": {
            "id": 1296269,
            "name": name,
            "full_name": repo,
            "owner": {"login": owner, "name": owner, "id": 1},
        },
        "pusher": {"name": pusher, "email": f"{pusher}@github.com"},
        "head_commit": {"id": commit, "message": "Update README"},
    }


def signed_headers(body: bytes, event: str = "push", delivery: str = "72d3162e-cc78-11e3-81ab-4c9367dc0958") -> dict:
    return {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery,
        "X-Hub-Signature-256": sign_body(body, SECRET),
    }
