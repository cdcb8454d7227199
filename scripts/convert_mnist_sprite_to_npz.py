#!/usr/bin/env python3
"""
Convert the MNIST sprite sheet and label buffer to a local NPZ cache.

Decoding the 65000-row sprite sheet takes a while and needs network
access. This script does it once and stores the decoded training and
test pools where ``MnistData(cache_dir=...)`` picks them up.

Usage:
    python scripts/convert_mnist_sprite_to_npz.py [--images URL] [--labels URL]

The script will:
1. Fetch and decode the sprite sheet and labels
2. Save the pools as data/mnist_sprite.npz
3. Verify the conversion was successful
"""

import os
import sys
import argparse
from typing import Tuple

import numpy as np

from mnist_cnn import config
from mnist_cnn.errors import DataLoadError
from mnist_cnn.mnist_data import CACHE_FILENAME, MnistData, load_pools, save_pools


def decode_sprite_pools(images: str, labels: str) -> Tuple[np.ndarray, ...]:
    """
    Fetch and decode the dataset without touching any cache.

    Returns:
    --------
    tuple
        (train_images, train_labels, test_images, test_labels)
    """
    print(f"📂 Loading MNIST sprite sheet from: {images}")

    data = MnistData(images_path=images, labels_path=labels)
    data.load()

    print("✅ Loaded successfully:")
    print(f"   - Training: {len(data.train_images)} images")
    print(f"   - Test: {len(data.test_images)} images")

    return data.train_images, data.train_labels, data.test_images, data.test_labels


def verify_conversion(npz_filepath: str, original_pools: Tuple) -> bool:
    """
    Verify that the NPZ file contains the same data as the decoded pools.

    Returns:
    --------
    bool
        True if verification passes
    """
    print("\n🔍 Verifying conversion...")

    names = ('Training images', 'Training labels', 'Test images', 'Test labels')
    for name, saved, original in zip(names, load_pools(npz_filepath), original_pools):
        assert np.array_equal(saved, original), f"{name} don't match!"

    print("✅ Verification passed! Data is identical.")
    return True


def main():
    """Main conversion function."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--images', default=config.images_url())
    parser.add_argument('--labels', default=config.labels_url())
    parser.add_argument('--force', action='store_true',
                        help='Overwrite an existing cache without asking')
    args = parser.parse_args()

    print("=" * 60)
    print("MNIST Sprite Sheet Converter")
    print("PNG sprite + uint8 labels → NPZ cache")
    print("=" * 60)

    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(script_dir)
    data_dir = config.cache_dir() or os.path.join(project_root, 'data')
    npz_path = os.path.join(data_dir, CACHE_FILENAME)

    if os.path.exists(npz_path) and not args.force:
        response = input(f"\n⚠️  {npz_path} already exists. Overwrite? (y/N): ")
        if response.lower() != 'y':
            print("❌ Conversion cancelled.")
            sys.exit(0)

    try:
        pools = decode_sprite_pools(args.images, args.labels)

        print(f"\n💾 Converting to NPZ format: {npz_path}")
        save_pools(npz_path, pools)
        npz_size = os.path.getsize(npz_path) / (1024 * 1024)  # MB
        print(f"✅ Saved successfully (size: {npz_size:.2f} MB)")

        verify_conversion(npz_path, pools)

        print("\n" + "=" * 60)
        print("✅ CONVERSION COMPLETE!")
        print("=" * 60)
        print(f"\n📝 Next step: export MNIST_CACHE_DIR={data_dir}")

    except DataLoadError as e:
        print(f"\n❌ Error during conversion: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
