"""
Command-line interface for Branch Navigator.
"""

import argparse
import asyncio
import io
import json
import logging
import sys
from pathlib import Path

# Fix Unicode output on Windows
if sys.platform == 'win32':
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

from . import __version__
from .config import get_log_level, load_config
from .core import BranchNavigatorError, NormalizedTree, load_conversation
from .navigation import plan_steps
from .normalize import normalize
from .visibility import apply_visibility, current_branch_oracle, visible_set_oracle

logger = logging.getLogger(__name__)


def _short(text: str, width: int) -> str:
    text = " ".join(text.split())
    return text[:width] + "..." if len(text) > width else text


def _load_tree(args, visible_ids=None):
    """Load, normalize and mark visibility for the file named in args."""
    path = Path(args.file)
    if not path.exists():
        print(f"File not found: {path}")
        return None, None

    try:
        conversation = load_conversation(path, args.conversation)
    except (BranchNavigatorError, OSError) as e:
        print(f"Could not load {path}: {e}")
        return None, None

    config = load_config()
    tree = normalize(conversation.mapping, label_max_length=config.label_max_length)

    if visible_ids:
        oracle = visible_set_oracle(visible_ids)
    else:
        oracle = current_branch_oracle(conversation)
    ids = [node.id for node in tree.nodes]
    apply_visibility(tree.nodes, asyncio.run(oracle(ids)))

    return conversation, tree


def _depths(tree: NormalizedTree) -> dict[str, int]:
    depths = {}
    for node in tree.nodes:
        parent_depth = depths.get(node.parent_id, -1) if node.parent_id else -1
        depths[node.id] = parent_depth + 1
    return depths


def cmd_tree(args):
    """Print the pruned conversation tree as an outline."""
    conversation, tree = _load_tree(args)
    if tree is None:
        return 1

    branch_points = sum(1 for n in tree.nodes if n.is_branch_point)
    print(f"\nConversation: {conversation.title}")
    print(f"ID: {conversation.conversation_id}")
    print(f"Nodes: {len(tree)} shown of {conversation.node_count} raw | Branch points: {branch_points}")
    print("-" * 70)

    if tree.root is None:
        print("  (empty conversation)")
        return 0

    depths = _depths(tree)
    for node in tree.nodes:
        if node.visually_hidden and not args.show_hidden:
            continue
        marker = " " if node.hidden else "*"
        role = f"[{node.role or 'none'}]"
        indent = "  " * depths[node.id]
        siblings = ""
        if node.is_branch_point:
            siblings = f" ({len(node.child_ids)} branches)"
        print(f"  {marker} {indent}{role:<12} {_short(node.label, 50)}{siblings}")

    print("\n  * = on the active branch")
    return 0


def cmd_plan(args):
    """Print the sibling switches needed to reveal a node."""
    conversation, tree = _load_tree(args, visible_ids=args.visible)
    if tree is None:
        return 1

    target = tree.get(args.target)
    if target is None:
        print(f"Node not in the pruned tree: {args.target}")
        return 1

    if not target.hidden:
        print(f"{args.target} is already visible, nothing to do")
        return 0

    steps = plan_steps(tree.nodes, args.target)
    if not steps:
        print(f"No sibling switch can reveal {args.target}")
        return 1

    print(f"\nPlan for {args.target}: {_short(target.label, 40)}")
    print("=" * 70)
    for i, step in enumerate(steps, 1):
        node = tree.get(step.node_id)
        label = _short(node.label, 40) if node else ""
        print(f"  {i:2}. {step.closer_direction.value:<5} on {step.node_id} | {label}")
    return 0


def cmd_dump(args):
    """Write the normalized tree as JSON."""
    conversation, tree = _load_tree(args)
    if tree is None:
        return 1

    out_path = Path(args.out)
    payload = {
        "conversation_id": conversation.conversation_id,
        "title": conversation.title,
        **tree.to_dict(),
    }
    out_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding='utf-8')

    print(f"[OK] Wrote {len(tree)} nodes and {len(tree.edges)} edges to {out_path}")
    return 0


def main(argv=None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog='branch-navigator',
        description='Inspect and navigate branching ChatGPT conversations'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Tree command
    tree_parser = subparsers.add_parser('tree', help='Show the pruned conversation tree')
    tree_parser.add_argument('file', help='Path to conversation JSON')
    tree_parser.add_argument('--conversation', '-c', help='Conversation id (for multi-conversation exports)')
    tree_parser.add_argument('--show-hidden', action='store_true', help='Include context notes')

    # Plan command
    plan_parser = subparsers.add_parser('plan', help='Plan the branch switches to reach a node')
    plan_parser.add_argument('file', help='Path to conversation JSON')
    plan_parser.add_argument('target', help='Id of the node to reveal')
    plan_parser.add_argument('--conversation', '-c', help='Conversation id (for multi-conversation exports)')
    plan_parser.add_argument('--visible', nargs='+', metavar='ID',
                             help='Ids currently on the page (default: the current_node branch)')

    # Dump command
    dump_parser = subparsers.add_parser('dump', help='Write the normalized tree as JSON')
    dump_parser.add_argument('file', help='Path to conversation JSON')
    dump_parser.add_argument('--out', '-o', required=True, help='Output JSON path')
    dump_parser.add_argument('--conversation', '-c', help='Conversation id (for multi-conversation exports)')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_log_level(),
        format='%(levelname)s %(name)s: %(message)s',
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        'tree': cmd_tree,
        'plan': cmd_plan,
        'dump': cmd_dump,
    }

    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
