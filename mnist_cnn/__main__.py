import sys

from mnist_cnn.demo import main

sys.exit(main())
