#!/usr/bin/env python3
"""
Switchboard CLI — one line in, five carriers out.

Every command has an operator name and a standard alias:

    OPERATOR        STANDARD        WHAT IT DOES
    --------        --------        ----------------------------------
    dial            serve           Start the HTTP server
    chat            ask             Send one message to a provider
    sweep           search          Search stored conversations
    dump            export          Export one conversation (json | txt)
    load            import          Import a conversation from a JSON file
    flash           stats           Show conversation stats and config
    hangup          delete          Delete a conversation
    ring            health          Ping a running instance
"""

import argparse
import asyncio
import json
import sys

from switchboard import __version__

BANNER = r"""
    ╔══════════════════════════════════════════════════╗
    ║                                                  ║
    ║   ░█▀▀░█░█░▀█▀░▀█▀░█▀▀░█░█░█▀▄░█▀█░█▀█░█▀▄░█▀▄   ║
    ║   ░▀▀█░█▄█░░█░░░█░░█░░░█▀█░█▀▄░█░█░█▀█░█▀▄░█░█   ║
    ║   ░▀▀▀░▀░▀░▀▀▀░░▀░░▀▀▀░▀░▀░▀▀░░▀▀▀░▀░▀░▀░▀░▀▀░   ║
    ║                                                  ║
    ║   One line in, five carriers out.   v""" + __version__ + r"""        ║
    ║                                                  ║
    ╚══════════════════════════════════════════════════╝
"""


def _store(cfg):
    from switchboard.storage import ConversationStore

    storage_cfg = cfg.get("storage", {})
    return ConversationStore(
        storage_cfg.get("conversations_dir", "./data/conversations"),
        max_messages=storage_cfg.get("max_messages", 50),
    )


def _fail(message: str) -> None:
    print(f"  ✗  {message}")
    sys.exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_dial(args):
    """Start the switchboard HTTP server."""
    import uvicorn
    from switchboard.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(BANNER)
    print(f"  Dialing up on {host}:{port}")
    print(f"  Default provider: {cfg.get('default_provider', 'anthropic')}")
    print(f"  Conversations: {cfg.get('storage', {}).get('conversations_dir', './data/conversations')}")
    print()

    uvicorn.run(
        "switchboard.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_chat(args):
    """Send one message and print the reply."""
    from switchboard.config import get_config
    from switchboard.errors import SwitchboardError
    from switchboard.gateway import Gateway
    from switchboard.main import setup_logging
    from switchboard.models import Complete, Delta

    cfg = get_config()
    setup_logging(cfg)
    gateway = Gateway.from_config(cfg)
    message = " ".join(args.message)

    async def _run():
        request = gateway.build_request(
            message,
            model=args.model or "",
            system_prompt=args.system,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
        )
        if not args.stream:
            reply = await gateway.respond(args.provider, request, conversation_id=args.conversation)
            print(reply.response)
            print(f"\n  ☎  conversation {reply.conversation_id} | {reply.model} | "
                  f"{reply.usage.total_tokens} tokens")
            if reply.store_error:
                print(f"  ⚠  not saved: {reply.store_error}")
            return

        async for event in gateway.respond_stream(args.provider, request, conversation_id=args.conversation):
            if isinstance(event, Delta):
                print(event.text, end="", flush=True)
            elif isinstance(event, Complete):
                print(f"\n\n  ☎  conversation {event.conversation_id} | {event.model} | "
                      f"{event.usage.total_tokens} tokens")
                if event.store_error:
                    print(f"  ⚠  not saved: {event.store_error}")
            else:
                print()
                _fail(event.message)

    try:
        asyncio.run(_run())
    except SwitchboardError as e:
        _fail(e.message)


def cmd_ring(args):
    """Ping a running switchboard instance."""
    import httpx

    url = (args.url or "http://localhost:3001").rstrip("/")
    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        if resp.status_code == 200:
            print(f"  ☎  Ring ring... {url} is UP (uptime {resp.json().get('uptime', 0):.0f}s)")

            cfg = httpx.get(f"{url}/api/config", timeout=5).json()
            stats = httpx.get(f"{url}/api/conversations/stats", timeout=5).json()
            print(f"  📡 Providers: {', '.join(cfg.get('availableProviders', []))}")
            print(f"  ⭐ Default: {cfg.get('defaultProvider', '?')}")
            print(f"  📼 Conversations: {stats.get('total_conversations', 0)}")
            print(f"  💬 Messages: {stats.get('total_messages', 0)}")
        else:
            print(f"  ✗  No answer — got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Dead line — nothing at {url}")
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")


def cmd_sweep(args):
    """Search stored conversations."""
    from switchboard.config import get_config

    store = _store(get_config())
    query = " ".join(args.query)
    print(f"  🔍 Sweeping for: '{query}'")
    print("  " + "─" * 56)

    results = asyncio.run(store.search(query, limit=args.results))
    if not results:
        print("  No signal found.")
        return

    for i, hit in enumerate(results, 1):
        print(f"\n  [{i}] {hit['title']} | matches: {hit['matches']}")
        print(f"      conv: {hit['conversation_id']}")
        print(f"      {hit['preview']}")


def cmd_dump(args):
    """Export one conversation."""
    from switchboard.config import get_config
    from switchboard.errors import SwitchboardError

    store = _store(get_config())

    try:
        if asyncio.run(store.metadata(args.conversation_id)) is None:
            _fail(f"No conversation {args.conversation_id}")
        content = asyncio.run(store.export(args.conversation_id, args.format))
    except SwitchboardError as e:
        _fail(e.message)

    if not args.output:
        print(content)
        return

    with open(args.output, "w", encoding="utf-8") as f:
        f.write(content)
    print(f"  📦 Dumped {args.conversation_id} to {args.output}")


def cmd_load(args):
    """Import a conversation from a JSON file (array of messages)."""
    from switchboard.config import get_config
    from switchboard.errors import SwitchboardError

    store = _store(get_config())

    try:
        with open(args.file, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _fail(f"Cannot read {args.file}: {e}")

    if isinstance(data, dict):
        data = data.get("messages") or data.get("conversation") or []

    try:
        conversation_id = asyncio.run(store.import_conversation(data, conversation_id=args.conversation))
    except SwitchboardError as e:
        _fail(e.message)
    print(f"  📥 Loaded {len(data)} messages into {conversation_id}")


def cmd_flash(args):
    """Show stats and config at a glance."""
    from switchboard.config import get_config

    cfg = get_config()
    providers = cfg.get("providers", {})

    print(BANNER)
    print("  Configuration")
    print(f"  ├─ Default:   {cfg.get('default_provider', 'anthropic')}")
    for name, pcfg in providers.items():
        key = "key set" if (pcfg or {}).get("api_key") else "no key"
        print(f"  ├─ {name + ':':<10} {(pcfg or {}).get('default_model', '?')} ({key})")
    print(f"  └─ Storage:   {cfg.get('storage', {}).get('conversations_dir', './data/conversations')}")

    stats = asyncio.run(_store(cfg).stats())
    print()
    print("  Conversations")
    print(f"  ├─ Total:         {stats['total_conversations']}")
    print(f"  ├─ Messages:      {stats['total_messages']}")
    print(f"  └─ Avg/convo:     {stats['average_messages_per_conversation']}")

    if args.recent:
        recent = asyncio.run(_store(cfg).list(limit=args.recent))
        print()
        print("  Recent")
        for meta in recent:
            print(f"  · {meta.id}  {meta.title}  ({meta.message_count} msgs, {meta.last_updated})")


def cmd_hangup(args):
    """Delete a conversation."""
    from switchboard.config import get_config
    from switchboard.errors import SwitchboardError

    store = _store(get_config())
    try:
        deleted = asyncio.run(store.delete(args.conversation_id))
    except SwitchboardError as e:
        _fail(e.message)

    if deleted:
        print(f"  ✂  Hung up on {args.conversation_id}")
    else:
        print(f"  ·  Nothing on the line for {args.conversation_id}")


def cmd_tone(args):
    """Print the banner."""
    print(BANNER)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names (operator + standard)."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="switchboard",
        description="Switchboard — one line in, five carriers out.",
        epilog=(
            "Each command has an operator name and standard aliases.\n"
            "Example: 'switchboard dial' and 'switchboard serve' do the same thing.\n"
            "Run 'switchboard <command> --help' for command-specific options."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"switchboard {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    # dial / serve / start
    def setup_dial(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["dial", "serve", "start"],
                 "Start the switchboard HTTP server", cmd_dial, setup_dial)

    # chat / ask
    def setup_chat(p):
        p.add_argument("message", nargs="+", help="Message to send")
        p.add_argument("--provider", "-P", default=None, help="Provider (default: from config)")
        p.add_argument("--model", "-m", default=None, help="Model id (default: provider default)")
        p.add_argument("--conversation", "-c", default=None, help="Continue this conversation id")
        p.add_argument("--system", "-s", default=None, help="System prompt")
        p.add_argument("--temperature", "-t", type=float, default=None, help="Sampling temperature")
        p.add_argument("--max-tokens", type=int, default=None, help="Reply length cap")
        p.add_argument("--stream", action="store_true", help="Print the reply as it arrives")

    _add_command(sub, ["chat", "ask"],
                 "Send one message to a provider", cmd_chat, setup_chat)

    # sweep / search
    def setup_sweep(p):
        p.add_argument("query", nargs="+", help="Search query")
        p.add_argument("--results", "-n", type=int, default=10, help="Number of results")

    _add_command(sub, ["sweep", "search"],
                 "Search stored conversations", cmd_sweep, setup_sweep)

    # dump / export
    def setup_dump(p):
        p.add_argument("conversation_id", help="Conversation to export")
        p.add_argument("--format", "-f", choices=["json", "txt"], default="json", help="Export format")
        p.add_argument("--output", "-o", default=None, help="Output file (default: stdout)")

    _add_command(sub, ["dump", "export"],
                 "Export a conversation", cmd_dump, setup_dump)

    # load / import
    def setup_load(p):
        p.add_argument("file", help="JSON file holding an array of messages")
        p.add_argument("--conversation", "-c", default=None, help="Import under this id (default: new id)")

    _add_command(sub, ["load", "import"],
                 "Import a conversation from JSON", cmd_load, setup_load)

    # flash / stats / info
    def setup_flash(p):
        p.add_argument("--recent", "-r", type=int, default=5,
                       help="Recent conversations to list (default: 5, 0 to skip)")

    _add_command(sub, ["flash", "stats", "info"],
                 "Show stats and config at a glance", cmd_flash, setup_flash)

    # hangup / delete
    def setup_hangup(p):
        p.add_argument("conversation_id", help="Conversation to delete")

    _add_command(sub, ["hangup", "delete"],
                 "Delete a conversation", cmd_hangup, setup_hangup)

    # ring / health / ping
    def setup_ring(p):
        p.add_argument("--url", "-u", default=None, help="Switchboard URL (default: http://localhost:3001)")

    _add_command(sub, ["ring", "health", "ping"],
                 "Ping a running switchboard instance", cmd_ring, setup_ring)

    # tone / banner
    _add_command(sub, ["tone", "banner"],
                 "Print the switchboard banner", cmd_tone)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_tone(args)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
