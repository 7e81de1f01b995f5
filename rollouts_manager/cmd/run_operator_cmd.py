"""
Run the RolloutManager operator
"""
# Standard
from pathlib import Path
from typing import List, Optional
import argparse
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, DryRunDeployManager
from ..exceptions import assert_config
from ..watch_manager import WatchManager
from .base import CmdBase

log = alog.use_channel("MAIN")

YAML_SUFFIXES = (".yaml", ".yml")


class RunOperatorCmd(CmdBase):
    """Watch RolloutManagers and reconcile them until interrupted. In dry run
    the cluster is simulated in memory and can be seeded from yaml files.
    """

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        dry_run_args = parser.add_argument_group("Dry Run Inputs")
        dry_run_args.add_argument(
            "--cr",
            "-c",
            type=Path,
            default=None,
            help="RolloutManager yaml to create once the watches are running",
        )
        dry_run_args.add_argument(
            "--resource_dir",
            "-r",
            type=Path,
            default=None,
            help="Directory of yaml files with objects that already exist",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        self._check_dry_run_inputs(args)

        deploy_manager = None
        if config.dry_run:
            deploy_manager = DryRunDeployManager(
                resources=load_yaml_dir(args.resource_dir)
            )
        manager = WatchManager(deploy_manager=deploy_manager)

        def handle_signal(signum, _frame):  # pragma: no cover
            log.info("Received signal %s", signum)
            manager.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, handle_signal)

        manager.watch()
        if args.cr:
            apply_cr(manager.deploy_manager, args.cr)
        manager.wait()
        log.info("Operator stopped")

    @staticmethod
    def _check_dry_run_inputs(args: argparse.Namespace):
        if args.cr is not None:
            assert_config(config.dry_run, "--cr is only supported with --dry_run")
            assert_config(args.cr.is_file(), f"--cr {args.cr} is not a file")
        if args.resource_dir is not None:
            assert_config(
                config.dry_run, "--resource_dir is only supported with --dry_run"
            )
            assert_config(
                args.resource_dir.is_dir(),
                f"--resource_dir {args.resource_dir} is not a directory",
            )


def apply_cr(deploy_manager: DeployManagerBase, cr_path: Path) -> dict:
    """Create the RolloutManager in the given file. apiVersion and kind may
    be omitted and the namespace defaults to "default".
    """
    cr_manifest = yaml.safe_load(cr_path.read_text(encoding="utf-8")) or {}
    cr_manifest.setdefault("apiVersion", constants.ROLLOUT_MANAGER_API_VERSION)
    cr_manifest.setdefault("kind", constants.ROLLOUT_MANAGER_KIND)
    cr_manifest.setdefault("metadata", {}).setdefault("namespace", "default")
    log.info(
        "Applying RolloutManager %s/%s",
        cr_manifest["metadata"]["namespace"],
        cr_manifest["metadata"].get("name"),
    )
    return deploy_manager.create_object(cr_manifest)


def load_yaml_dir(resource_dir: Optional[Path]) -> List[dict]:
    """Load every document of every yaml file in the directory, in file name
    order
    """
    if resource_dir is None:
        return []
    resources = []
    for path in sorted(resource_dir.iterdir()):
        if path.suffix not in YAML_SUFFIXES:
            continue
        log.debug2("Loading resources from %s", path)
        with path.open(encoding="utf-8") as handle:
            resources.extend(doc for doc in yaml.safe_load_all(handle) if doc)
    return resources
