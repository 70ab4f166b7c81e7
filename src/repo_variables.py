"""GitHub repository variables (the automation variable store).

Workflows in project repositories build their role ARNs from a repository
variable holding the AWS account id. This module reads and writes such
variables through the GitHub REST API.
"""

import logging
from typing import Optional

import requests

from common import run_command, tool_available

logger = logging.getLogger(__name__)

GITHUB_API_URL = 'https://api.github.com'


class GitHubError(Exception):
    """GitHub API request failed."""


class VariableStore:
    """Actions variables of a single repository."""

    def __init__(self, org: str, repo: str, token: str,
                 api_url: str = GITHUB_API_URL, timeout: float = 10.0):
        self.org = org
        self.repo = repo
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.headers = {
            'Accept': 'application/vnd.github+json',
            'Authorization': f'Bearer {token}',
            'X-GitHub-Api-Version': '2022-11-28',
        }

    @property
    def _variables_url(self) -> str:
        return f'{self.api_url}/repos/{self.org}/{self.repo}/actions/variables'

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return requests.request(method, url, headers=self.headers,
                                    timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise GitHubError(f"Timeout contacting {self.api_url}") from e
        except requests.exceptions.RequestException as e:
            raise GitHubError(f"Cannot reach {self.api_url}: {e}") from e

    def get(self, name: str) -> Optional[str]:
        """Get a variable value, or None if it is not defined."""
        resp = self._request('GET', f'{self._variables_url}/{name}')
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise GitHubError(
                f"Reading variable {name} failed: {resp.status_code} {resp.text[:100]}"
            )
        value: Optional[str] = resp.json().get('value')
        return value

    def put(self, name: str, value: str) -> None:
        """Create or update a variable."""
        if self.get(name) is None:
            resp = self._request('POST', self._variables_url, json={'name': name, 'value': value})
            expected = 201
        else:
            resp = self._request('PATCH', f'{self._variables_url}/{name}',
                                 json={'name': name, 'value': value})
            expected = 204
        if resp.status_code != expected:
            raise GitHubError(
                f"Writing variable {name} failed: {resp.status_code} {resp.text[:100]}"
            )
        logger.info(f"Set GitHub variable {name} on {self.org}/{self.repo}")


def resolve_github_token(env: dict) -> Optional[str]:
    """Find a GitHub token: GH_TOKEN, GITHUB_TOKEN, then `gh auth token`."""
    for key in ('GH_TOKEN', 'GITHUB_TOKEN'):
        if token := env.get(key):
            return token

    if not tool_available('gh'):
        return None
    rc, out, _ = run_command(['gh', 'auth', 'token'], timeout=30, env=env or None)
    if rc == 0 and out.strip():
        return out.strip()
    return None


def open_variable_store(config) -> Optional[VariableStore]:
    """Return a store for the hosting repository, or None without credentials."""
    if not config.repo:
        return None
    token = resolve_github_token(config.env)
    if not token:
        return None
    api_url = config.env.get('GITHUB_API_URL', GITHUB_API_URL)
    return VariableStore(config.repo.org, config.repo.name, token, api_url=api_url)
