#!/usr/bin/env python
"""
Exome Analysis Pipeline Stages for Batch Job Schedulers

Usage:
    exmpipe init [--debug|--info] [--yml=<path>]
    exmpipe align [--debug|--info] --input=<path> --ref-yml=<path>
        [--array-index=<int>] [--log=<path>] [--target=<bed>] [--cpus=<int>]
        [--dest-dir=<path>] [--skip-cleaning] [--print-subprocesses]
        [--pipeline] [--fix-misencoded] [--no-phone-home]
    exmpipe haplotype-caller [--debug|--info] --input=<path> --ref-yml=<path>
        [--log=<path>] [--target=<bed>] [--cpus=<int>] [--dest-dir=<path>]
        [--skip-cleaning] [--print-subprocesses] [--no-phone-home]
    exmpipe bam-metrics [--debug|--info] --input=<path> --ref-yml=<path>
        [--log=<path>] [--dest-dir=<path>] [--skip-cleaning]
        [--print-subprocesses]
    exmpipe depth-of-coverage [--debug|--info] --input=<path> --target=<bed>
        [--log=<path>] [--dest-dir=<path>] [--skip-cleaning]
        [--print-subprocesses] [--no-phone-home] --ref-yml=<path>
    exmpipe genotype-gvcfs [--debug|--info] --input=<path> --target=<bed>
        [--name=<str>] [--array-index=<int>] --ref-yml=<path>
        [--array-size=<int>] [--log=<path>] [--dest-dir=<path>]
        [--skip-cleaning] [--print-subprocesses] [--pipeline] [--no-recal]
        [--no-phone-home]
    exmpipe gather-vcfs [--debug|--info] --name=<str> --ref-yml=<path>
        [--array-size=<int>] [--wait=<sec>] [--log=<path>] [--dest-dir=<path>]
        [--skip-cleaning] [--print-subprocesses] [--pipeline] [--no-recal]
        [--no-phone-home]
    exmpipe recalibrate-vcf [--debug|--info] --input=<path> --ref-yml=<path>
        [--log=<path>] [--dest-dir=<path>] [--skip-cleaning]
        [--print-subprocesses] [--no-phone-home]
    exmpipe graph
    exmpipe -h|--help
    exmpipe --version

Commands:
    init                    Create a config YAML template
    align                   Align the FASTQ files of one work table line with
                            BWA mem, sort and mark duplicates with Picard
    haplotype-caller        Call variants of a BAM file in GVCF mode
    bam-metrics             Collect Picard metrics of a BAM file
    depth-of-coverage       Summarize depth of coverage over target intervals
    genotype-gvcfs          Joint call one slice of a gVCF list (array member)
    gather-vcfs             Merge the slices once every array member finished
    recalibrate-vcf         Apply variant quality score recalibration
    graph                   Print the declared stage graph

Options:
    -h, --help              Print help and exit
    --version               Print version and exit
    --debug, --info         Execute a command with debug|info messages
    --yml=<path>            Specify a config YAML path [default: exmpipe.yml]
    -i, --input=<path>      Work table, BAM file, gVCF list (ending .list), or
                            VCF file, depending on the command
    -r, --ref-yml=<path>    Config YAML with reference files and tools
    -a, --array-index=<int>
                            1-based array task index [default: 1]
    -s, --array-size=<int>  Number of array tasks in a scatter-gather group
                            [default: 1]
    -l, --log=<path>        Log file (derived from the output name by default)
    -t, --target=<bed>      Target intervals file ending .bed, or its code in
                            the config YAML
    -n, --name=<str>        Analysis name for outputs (derived from the gVCF
                            list name by default)
    --cpus=<int>            Limit CPU cores used
    --dest-dir=<path>       Specify a destination directory path [default: .]
    --wait=<sec>            Wait for missing progress markers [default: 0]
    --skip-cleaning         Skip incomplete file removal when a step fails
    --print-subprocesses    Print STDOUT/STDERR outputs from subprocesses
    -P, --pipeline          Start the next stage of the pipeline on success
    -F, --fix-misencoded    Rewrite Illumina 1.5+ base qualities to 1.8+
    -X, --no-recal          Do not run variant quality score recalibration
    -B, --no-phone-home     Prevent GATK from phoning home
"""

import logging
import os
import sys

from docopt import docopt

from .. import __version__
from ..errors import IncompleteScatterGatherError, PipelineError
from ..task.chain import describe_graph
from .stage import STAGE_CLASSES, build_stage_task, run_stage_task
from .util import print_yml, write_config_yml


def main():
    args = docopt(__doc__, version=__version__)
    if args['--debug']:
        log_level = 'DEBUG'
    elif args['--info']:
        log_level = 'INFO'
    else:
        log_level = 'WARNING'
    logging.basicConfig(
        format='%(asctime)s %(levelname)-8s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S', level=log_level
    )
    logger = logging.getLogger(__name__)
    logger.debug(f'args:{os.linesep}{args}')
    if args['init']:
        write_config_yml(path=args['--yml'])
    elif args['graph']:
        print_yml(describe_graph(STAGE_CLASSES.values()))
    else:
        command = next(c for c in STAGE_CLASSES if args[c])
        try:
            task = build_stage_task(command=command, args=args)
        except IncompleteScatterGatherError as e:
            sys.exit(str(e))
        except PipelineError as e:
            sys.exit(
                os.linesep.join(
                    ['Missing/Incorrect required arguments', str(e), __doc__]
                )
            )
        run_stage_task(task=task, console_log_level=log_level)
