"""Write a starter swarm configuration."""

from pathlib import Path

import typer

from ..config.constants import DEFAULT_CONFIG_FILE
from ..utils.output import console, print_error

TEMPLATE = """\
version: 1
swarm:
  name: "Swarm Name"
  main: lead_developer
  # before:  # Optional: commands to run before launching the swarm, in order
  #   - "npm install"
  #   - "docker-compose up -d"
  instances:
    lead_developer:
      description: "Lead developer who coordinates the team and makes architectural decisions"
      directory: .
      model: sonnet
      prompt: |
        You are the lead developer coordinating the team
      allowed_tools: [Read, Edit, Bash, Write]
      # connections: [frontend_dev, backend_dev]

    # Example instances (uncomment and modify as needed):

    # frontend_dev:
    #   description: "Frontend developer specializing in React and modern web technologies"
    #   directory: ./frontend
    #   model: sonnet
    #   prompt: |
    #     You specialize in frontend development with React and TypeScript
    #   allowed_tools: [Read, Edit, Write, "Bash(npm:*)", "Bash(yarn:*)"]

    # backend_dev:
    #   description: "Backend developer focusing on APIs and databases"
    #   directory: ./backend
    #   model: sonnet
    #   worktree: true
    #   allowed_tools: [Read, Edit, Write, Bash]

    # reviewer:
    #   description: "Reviews changes using an OpenAI model"
    #   provider: openai
    #   model: gpt-4o
    #   api_version: chat_completion
    #   openai_token_env: OPENAI_API_KEY
"""


def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration"),
) -> None:
    """Create a starter agentswarm.yml in the current directory."""
    config_path = Path(DEFAULT_CONFIG_FILE)
    if config_path.exists() and not force:
        print_error(f"Configuration file already exists: {config_path}")
        print_error("Use --force to overwrite")
        raise typer.Exit(1)

    config_path.write_text(TEMPLATE)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("Edit the file to configure your swarm, then run:")
    console.print("  [cyan]agentswarm start[/cyan]")
