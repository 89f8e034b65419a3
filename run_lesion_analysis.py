#!/usr/bin/env python3

import os
import argparse
import logging
from lesion_analysis.config import ContrastParameters, MIN_LESION_VOXELS
from lesion_analysis.pipeline import run_lesion_analysis

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Label a lesion mask and export zoomed/full snapshots of every lesion"
    )
    parser.add_argument('--lesion-mask', required=True,
                        help='Binary lesion mask (NIfTI)')
    parser.add_argument('--output-folder', default='output_lesions',
                        help='Directory for snapshots and the log file')

    modality_group = parser.add_argument_group('Modalities')
    modality_group.add_argument('--flair-star', help='FLAIR* image (NIfTI)')
    modality_group.add_argument('--swi', help='SWI image (NIfTI)')
    modality_group.add_argument('--flair', help='FLAIR image (NIfTI)')
    modality_group.add_argument('--phase', help='Phase image (NIfTI)')

    view_group = parser.add_argument_group('View')
    view_group.add_argument('--modality', default='flair_star',
                            choices=['flair_star', 'swi', 'flair', 'phase'],
                            help='Modality shown in snapshots (default: flair_star)')
    view_group.add_argument('--zoom', type=float, default=1.0,
                            help='Zoom factor; detail views use twice this (default: 1.0)')
    view_group.add_argument('--parameter-set', default='default',
                            choices=sorted(ContrastParameters.get_parameter_sets()),
                            help='Contrast parameter set (default: default)')

    lesion_group = parser.add_argument_group('Lesions')
    lesion_group.add_argument('--min-lesion-voxels', type=int, default=MIN_LESION_VOXELS,
                              help=f'Drop components with this many voxels or fewer (default: {MIN_LESION_VOXELS})')
    lesion_group.add_argument('--max-lesions', type=int,
                              help='Only export the largest N lesions')

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for lesion analysis"""
    args = parse_args(argv)

    input_files = {
        'lesion': args.lesion_mask,
        'flair_star': args.flair_star,
        'swi': args.swi,
        'flair': args.flair,
        'phase': args.phase,
    }
    input_files = {name: path for name, path in input_files.items() if path}

    logger.info("Verifying input files...")
    for name, path in input_files.items():
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Input file for {name} does not exist: {path}")

    run_lesion_analysis(
        input_files,
        output_dir=args.output_folder,
        zoom=args.zoom,
        modality=args.modality,
        min_lesion_voxels=args.min_lesion_voxels,
        max_lesions=args.max_lesions,
        parameter_set=args.parameter_set
    )

    logger.info(f"Processing completed. Results saved to: {args.output_folder}")


if __name__ == "__main__":
    main()
