"""
Base class for the operator's command line subcommands
"""

# Standard
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand owns its argparse subparser and the function that runs
    once arguments are parsed
    """

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Create the subparser for this command and add its arguments"""

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace):
        """Run the command with the parsed arguments"""

    def register(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command to the main parser so that args.func runs it

        Args:
            subparsers:  argparse._SubParsersAction
                The subparsers of the main parser

        Returns:
            parser:  argparse.ArgumentParser
                The parser for this command
        """
        parser = self.add_subparser(subparsers)
        parser.set_defaults(func=self.cmd)
        return parser
