"""
Layers
======

The unit of composition. Every layer reads a window of an input array and
writes a window of an output array, both given as (array, offset) pairs.
Adjacent layers share buffers: the output array of one layer is the input
array of the next, so back-propagation reads exactly what the forward pass
wrote.

Layer contract:
- set_input_and_output / set_input_get_output: wire the buffers
- feed(learning): forward pass
- back_propagate(output_error, ..., input_error, ..., learning): backward
  pass, accumulating gradients when learning
- update_weights(rate, momentum): momentum gradient descent step
- create_siamese / clone: duplicate with shared or copied weights
- count_parameters(exclude): parameter count, once per siamese group

Layers implemented:
- Dense: fully connected, optionally biased
- ElementwiseWeights: one trainable weight per entry
- Activation: elementwise non-linearity (or softmax)
- Dropout: random unit masking during learning
- Convolution: 2D convolution with fused bias and activation
- RandomConvolution: untrained convolution with kernels redrawn every feed
- MaxPooling: non-overlapping max pooling
"""

import copy
import numbers

import numpy as np

from .activations import get_activation
from .buffers import DEFAULT_DTYPE, BufferSlice, allocate
from .exceptions import CallOrderError, HyperparameterError, NotConnectedError, ShapeMismatchError
from .kernels import (
    apply_activation, apply_affine, apply_convolution, apply_dropout, apply_elementwise_weights,
    apply_max_pool, backpropagate_activation, backpropagate_affine, backpropagate_convolution,
    backpropagate_dropout, backpropagate_elementwise_weights, backpropagate_max_pool,
    convolution_output_side,
)
from .parameters import ParameterStore, init_weights
from .random_generator import ensure_generator
from .siamese import claim, default_registry


def _check_positive(value, name):
    if not isinstance(value, (int, np.integer)) or isinstance(value, bool) or value <= 0:
        raise HyperparameterError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


class Layer:
    """
    Base class for all layers.

    Args:
        input_size: Number of input entries
        output_size: Number of output entries
        dtype: Element type of every buffer and parameter (default: float64)
        create_io: Allocate own input and output buffers (default: False)
        registry: SiameseRegistry handing out the siamese handle
    """

    kind = 'layer'

    def __init__(self, input_size, output_size, dtype=DEFAULT_DTYPE, create_io=False, registry=None):
        self.input_size = _check_positive(input_size, 'input_size')
        self.output_size = _check_positive(output_size, 'output_size')
        self.dtype = np.dtype(dtype)
        if not np.issubdtype(self.dtype, np.floating):
            raise HyperparameterError(f"dtype must be a floating type, got {self.dtype}")

        self.create_io = create_io
        self.registry = registry if registry is not None else default_registry()
        self.siamese_id = self.registry.new_handle(self.kind)
        self.store = ParameterStore()

        self.input = None
        self.input_offset = 0
        self.output = None
        self.output_offset = 0

        self._fed = False
        self._fed_learning = False

    def _create_own_io(self):
        self.set_input_and_output(allocate(self.input_size, self.dtype), 0,
                                  allocate(self.output_size, self.dtype), 0)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def params(self):
        return self.store.params

    @property
    def grads(self):
        return self.store.grads

    @property
    def momentums(self):
        return self.store.momentums

    @property
    def num_parameters(self):
        """Number of trainable scalars of this physical layer."""
        return self.count_parameters()

    def count_parameters(self, exclude=None):
        """
        Count parameters, skipping siamese groups already in ``exclude``.

        Args:
            exclude: Set of siamese handles counted so far. The layer's own
                handle is added to it.

        Returns:
            0 if this layer's group was already counted, otherwise the number
            of trainable scalars.
        """
        if exclude is None:
            exclude = set()
        if not claim(self.siamese_id, exclude):
            return 0
        return self.store.size

    def update_weights(self, rate, momentum=0.0, exclude=None):
        """
        Momentum gradient descent step on every parameter.

        A no-op for parameterless layers. When ``exclude`` is given, a siamese
        group already in it is skipped, so shared arrays step once per call.
        """
        if exclude is not None and not claim(self.siamese_id, exclude):
            return
        self.store.update(rate, momentum)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_input_and_output(self, input, input_offset, output, output_offset):
        """
        Wire the layer to ``input[input_offset:]`` and ``output[output_offset:]``.

        Raises:
            ShapeMismatchError: If either window is too short or has the wrong dtype.
        """
        BufferSlice(input, input_offset, self.input_size, dtype=self.dtype, name='input')
        BufferSlice(output, output_offset, self.output_size, dtype=self.dtype, name='output')

        self.input = input
        self.input_offset = int(input_offset)
        self.output = output
        self.output_offset = int(output_offset)
        self._fed = False
        self._on_wired()

    def set_input_get_output(self, input, input_offset=0):
        """Wire the input and a freshly allocated output buffer, and return the output."""
        output = allocate(self.output_size, self.dtype)
        self.set_input_and_output(input, input_offset, output, 0)
        return output

    def _on_wired(self):
        pass

    @property
    def is_connected(self):
        return self.input is not None and self.output is not None

    @property
    def input_view(self):
        self._check_connected()
        return self.input[self.input_offset:self.input_offset + self.input_size]

    @property
    def output_view(self):
        self._check_connected()
        return self.output[self.output_offset:self.output_offset + self.output_size]

    @property
    def input_slice(self):
        self._check_connected()
        return BufferSlice(self.input, self.input_offset, self.input_size, name='input')

    @property
    def output_slice(self):
        self._check_connected()
        return BufferSlice(self.output, self.output_offset, self.output_size, name='output')

    def _check_connected(self):
        if not self.is_connected:
            raise NotConnectedError(f"{self!r} has no input/output buffers; call set_input_and_output first")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def feed(self, learning=False):
        """Forward pass: compute the output window from the input window."""
        self._check_connected()
        self._forward(learning)
        self._fed = True
        self._fed_learning = learning

    def back_propagate(self, output_error, output_error_offset=0, input_error=None,
                       input_error_offset=0, learning=False):
        """
        Backward pass for the latest feed.

        Args:
            output_error: Array holding the error of the output window
            output_error_offset: Index of the first output error entry
            input_error: Array to write the input error into, or None to
                allocate one
            input_error_offset: Index of the first input error entry
            learning: Accumulate parameter gradients

        Returns:
            The input error array

        Raises:
            CallOrderError: If there is no feed left to back-propagate.
        """
        self._check_connected()
        if not self._fed:
            raise CallOrderError(f"{self!r}: back_propagate called without a preceding feed")

        BufferSlice(output_error, output_error_offset, self.output_size, name='output error')
        if input_error is None:
            input_error = allocate(self.input_size, self.dtype)
            input_error_offset = 0
        BufferSlice(input_error, input_error_offset, self.input_size, name='input error')

        self._backward(output_error, output_error_offset, input_error, input_error_offset, learning)
        self._fed = False
        return input_error

    def _forward(self, learning):
        raise NotImplementedError

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Duplication
    # ------------------------------------------------------------------

    def create_siamese(self):
        """A new layer sharing this layer's weight, gradient and momentum arrays."""
        twin = self._duplicate()
        twin.store = self.store.siamese()
        return twin

    def clone(self):
        """A new layer with copied weights, zeroed accumulators and a new siamese handle."""
        twin = self._duplicate()
        twin.store = self.store.clone()
        twin.siamese_id = self.registry.new_handle(self.kind)
        return twin

    def _duplicate(self):
        twin = copy.copy(self)
        twin.input = None
        twin.input_offset = 0
        twin.output = None
        twin.output_offset = 0
        twin._fed = False
        twin._fed_learning = False
        twin._allocate_private_buffers()
        if twin.create_io:
            twin._create_own_io()
        return twin

    def _allocate_private_buffers(self):
        pass

    def __call__(self, learning=False):
        self.feed(learning)
        return self.output_view

    def __repr__(self):
        return f"{type(self).__name__}({self.input_size}, {self.output_size})"


class Dense(Layer):
    """
    Fully Connected (Dense) Layer.

    Each output is connected to every input.

    Args:
        input_size: Number of input features
        output_size: Number of output features
        use_bias: Whether to use bias (default: True)
        create_io: Allocate own input and output buffers
        rng: RandomGenerator (or seed) for the initial weights
        dtype: Element type (default: float64)

    Forward: output = input @ W + b
    """

    kind = 'dense'

    def __init__(self, input_size, output_size, use_bias=True, create_io=False, rng=None,
                 dtype=DEFAULT_DTYPE, registry=None):
        super().__init__(input_size, output_size, dtype=dtype, create_io=create_io, registry=registry)
        self.use_bias = use_bias

        rng = ensure_generator(rng)
        fan_in, fan_out = self.input_size, self.output_size
        self.store.add('weight', init_weights(rng, (fan_in, fan_out), fan_in, fan_out, self.dtype))
        if use_bias:
            self.store.add('bias', init_weights(rng, (fan_out,), fan_in, fan_out, self.dtype))

        if create_io:
            self._create_own_io()

    def _forward(self, learning):
        """Forward pass: y = x @ W + b"""
        apply_affine(self.input, self.input_offset, self.output, self.output_offset,
                     self.params['weight'], self.params.get('bias'))

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        backpropagate_affine(self.input, self.input_offset, self.params['weight'],
                             output_error, output_error_offset, input_error, input_error_offset,
                             weight_gradients=self.grads['weight'],
                             bias_gradients=self.grads.get('bias'), learning=learning)

    def __repr__(self):
        return f"Dense({self.input_size}, {self.output_size})"


class ElementwiseWeights(Layer):
    """
    One trainable weight per entry: output[i] = input[i] * w[i].

    Args:
        size: Number of entries
        create_io: Allocate own input and output buffers
        rng: RandomGenerator (or seed); weights start as normal samples with
            variance 1
    """

    kind = 'elementwise_weights'

    def __init__(self, size, create_io=False, rng=None, dtype=DEFAULT_DTYPE, registry=None):
        super().__init__(size, size, dtype=dtype, create_io=create_io, registry=registry)
        rng = ensure_generator(rng)
        self.store.add('weight', np.asarray(rng.normal(1.0, self.output_size), dtype=self.dtype))
        if create_io:
            self._create_own_io()

    def _forward(self, learning):
        apply_elementwise_weights(self.input, self.input_offset, self.output, self.output_offset,
                                  self.params['weight'])

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        backpropagate_elementwise_weights(self.input, self.input_offset, self.params['weight'],
                                          output_error, output_error_offset, input_error,
                                          input_error_offset, weight_gradients=self.grads['weight'],
                                          learning=learning)

    def __repr__(self):
        return f"ElementwiseWeights({self.output_size})"


class Activation(Layer):
    """
    Activation layer (applies a non-linearity).

    Args:
        size: Number of entries (input and output have the same size)
        activation: Activation name or instance (default: 'sigmoid')
        **activation_kwargs: Passed to the activation, e.g. ``alpha=0.1``
    """

    kind = 'activation'

    def __init__(self, size, activation='sigmoid', create_io=False, dtype=DEFAULT_DTYPE,
                 registry=None, **activation_kwargs):
        super().__init__(size, size, dtype=dtype, create_io=create_io, registry=registry)
        self.activation = get_activation(activation, **activation_kwargs)
        if create_io:
            self._create_own_io()

    def _forward(self, learning):
        apply_activation(self.input, self.input_offset, self.output, self.output_offset,
                         self.output_size, self.activation)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        backpropagate_activation(self.input, self.input_offset, self.output, self.output_offset,
                                 self.output_size, output_error, output_error_offset,
                                 input_error, input_error_offset, self.activation)

    def __repr__(self):
        return f"Activation({self.output_size}, {self.activation!r})"


class Dropout(Layer):
    """
    Dropout Layer.

    Randomly zeros units during learning. At inference every unit is scaled
    by (1 - rate) instead, so the expected magnitude matches training.

    Args:
        size: Number of entries
        rate: Probability of dropping each unit, in [0, 1] (default: 0.5)
        rng: RandomGenerator (or seed) for the masks
    """

    kind = 'dropout'

    def __init__(self, size, rate=0.5, create_io=False, rng=None, dtype=DEFAULT_DTYPE, registry=None):
        super().__init__(size, size, dtype=dtype, create_io=create_io, registry=registry)
        if isinstance(rate, bool) or not isinstance(rate, numbers.Real) or not 0.0 <= rate <= 1.0:
            raise HyperparameterError(f"Dropout rate must be a number in [0, 1], got {rate!r}")
        self.rate = float(rate)
        self.rng = ensure_generator(rng)
        self._allocate_private_buffers()
        if create_io:
            self._create_own_io()

    def _allocate_private_buffers(self):
        self._dropped = np.zeros(self.output_size, dtype=bool)

    def _duplicate(self):
        twin = super()._duplicate()
        twin.rng = self.rng.spawn()
        return twin

    def _forward(self, learning):
        apply_dropout(self.input, self.input_offset, self.output, self.output_offset,
                      self.output_size, self._dropped, self.rate, learning, self.rng)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        if learning and not self._fed_learning:
            raise CallOrderError("Dropout back-propagated in learning mode after a non-learning feed")
        backpropagate_dropout(output_error, output_error_offset, input_error, input_error_offset,
                              self.output_size, self._dropped, self.rate, learning)

    def __repr__(self):
        return f"Dropout({self.output_size}, rate={self.rate})"


class Convolution(Layer):
    """
    2D Convolutional Layer.

    Images are flat, channel-major buffers: entry (c, x, y) of a
    (depth, width, height) image is at ``c * width * height + x * height + y``.

    The layer applies its activation to the biased convolution sum, so a
    convolution is usually followed directly by pooling.

    Args:
        input_depth: Number of input channels
        input_width: Input width
        input_height: Input height
        depth: Number of output channels (number of kernels)
        kernel_side: Side of the square kernels
        stride: Stride of the convolution (default: 1)
        padding: 'valid' (no padding), 'same' (pad (kernel_side - 1) // 2) or int
        activation: Activation name or instance (default: 'relu')
        use_bias: Whether to use bias (default: True)

    Output size:
        out_width = (width + 2*pad - kernel_side) // stride + 1
        out_height = (height + 2*pad - kernel_side) // stride + 1
    """

    kind = 'convolution'

    def __init__(self, input_depth, input_width, input_height, depth, kernel_side, stride=1,
                 padding='valid', activation='relu', use_bias=True, create_io=False, rng=None,
                 dtype=DEFAULT_DTYPE, registry=None):
        input_shape = (_check_positive(input_depth, 'input_depth'),
                       _check_positive(input_width, 'input_width'),
                       _check_positive(input_height, 'input_height'))
        depth = _check_positive(depth, 'depth')
        kernel_side = _check_positive(kernel_side, 'kernel_side')
        stride = _check_positive(stride, 'stride')

        if padding == 'valid':
            pad = 0
        elif padding == 'same':
            pad = (kernel_side - 1) // 2
        elif isinstance(padding, (int, np.integer)) and padding >= 0:
            pad = int(padding)
        else:
            raise HyperparameterError(f"padding must be 'valid', 'same' or a non-negative int, got {padding!r}")

        if kernel_side > min(input_width, input_height) + 2 * pad:
            raise HyperparameterError(
                f"Kernel side {kernel_side} is larger than the padded input "
                f"{input_width + 2 * pad}x{input_height + 2 * pad}")

        output_shape = (depth,
                        convolution_output_side(input_width, kernel_side, stride, pad),
                        convolution_output_side(input_height, kernel_side, stride, pad))

        super().__init__(int(np.prod(input_shape)), int(np.prod(output_shape)), dtype=dtype,
                         create_io=create_io, registry=registry)

        self.input_shape = input_shape
        self.output_shape = output_shape
        self.kernel_side = kernel_side
        self.stride = stride
        self.padding = pad
        self.use_bias = use_bias
        self.activation = get_activation(activation)

        rng = ensure_generator(rng)
        fan_in = input_depth * kernel_side * kernel_side
        fan_out = depth
        self.store.add('weight', init_weights(rng, (depth, input_depth, kernel_side, kernel_side),
                                              fan_in, fan_out, self.dtype))
        if use_bias:
            self.store.add('bias', np.zeros(depth, dtype=self.dtype))

        self._allocate_private_buffers()
        if create_io:
            self._create_own_io()

    def _allocate_private_buffers(self):
        # The sum before the activation, and its error.
        self._pre_activation = allocate(self.output_size, self.dtype)
        self._pre_activation_error = allocate(self.output_size, self.dtype)

    @property
    def kernels(self):
        """Kernel bank, shape (depth, input_depth, kernel_side, kernel_side)."""
        return self.params['weight']

    def _forward(self, learning):
        apply_convolution(self.input, self.input_offset, self.input_shape,
                          self._pre_activation, 0, self.output_shape,
                          self.kernels, self.params.get('bias'),
                          stride=self.stride, padding=self.padding)
        apply_activation(self._pre_activation, 0, self.output, self.output_offset,
                         self.output_size, self.activation)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        backpropagate_activation(self._pre_activation, 0, self.output, self.output_offset,
                                 self.output_size, output_error, output_error_offset,
                                 self._pre_activation_error, 0, self.activation)
        backpropagate_convolution(self.input, self.input_offset, self.input_shape,
                                  self._pre_activation_error, 0, self.output_shape,
                                  input_error, input_error_offset, self.kernels,
                                  stride=self.stride, padding=self.padding,
                                  kernel_gradients=self.grads.get('weight'),
                                  bias_gradients=self.grads.get('bias'), learning=learning)

    def __repr__(self):
        return (f"Convolution({self.input_shape} -> {self.output_shape}, "
                f"kernel={self.kernel_side}, stride={self.stride}, padding={self.padding})")


class RandomConvolution(Convolution):
    """
    Convolution with fixed-distribution random kernels.

    Fresh kernels are drawn (variance 2 / fan_in) on every feed and never
    trained: there are no parameters, back-propagation only produces the
    input error and update_weights does nothing. Useful as a random feature
    extractor in front of trainable layers. No bias.

    Args: as Convolution, without ``use_bias``.
    """

    kind = 'random_convolution'

    def __init__(self, input_depth, input_width, input_height, depth, kernel_side, stride=1,
                 padding='valid', activation='relu', create_io=False, rng=None,
                 dtype=DEFAULT_DTYPE, registry=None):
        self.rng = ensure_generator(rng)
        super().__init__(input_depth, input_width, input_height, depth, kernel_side, stride=stride,
                         padding=padding, activation=activation, use_bias=False, create_io=create_io,
                         rng=self.rng, dtype=dtype, registry=registry)
        self.store = ParameterStore()

    def _allocate_private_buffers(self):
        super()._allocate_private_buffers()
        depth, input_depth = self.output_shape[0], self.input_shape[0]
        self._kernels = np.zeros((depth, input_depth, self.kernel_side, self.kernel_side), dtype=self.dtype)

    def _duplicate(self):
        twin = super()._duplicate()
        twin.rng = self.rng.spawn()
        return twin

    @property
    def kernels(self):
        return self._kernels

    def _forward(self, learning):
        fan_in = self.input_shape[0] * self.kernel_side * self.kernel_side
        self._kernels[...] = self.rng.normal(2.0 / fan_in, self._kernels.shape)
        super()._forward(learning)

    def __repr__(self):
        return (f"RandomConvolution({self.input_shape} -> {self.output_shape}, "
                f"kernel={self.kernel_side}, stride={self.stride}, padding={self.padding})")


class MaxPooling(Layer):
    """
    Max Pooling Layer.

    Takes the maximum over non-overlapping x_scale * y_scale windows.
    Trailing rows and columns that do not fill a window are ignored.

    Args:
        input_depth: Number of channels
        input_width: Input width
        input_height: Input height
        x_scale: Window width
        y_scale: Window height (default: x_scale)

    The backward pass routes each output error to the input position that
    held the max (first one in scan order on ties) and zero elsewhere.
    """

    kind = 'max_pooling'

    def __init__(self, input_depth, input_width, input_height, x_scale, y_scale=None,
                 create_io=False, dtype=DEFAULT_DTYPE, registry=None):
        if y_scale is None:
            y_scale = x_scale
        input_shape = (_check_positive(input_depth, 'input_depth'),
                       _check_positive(input_width, 'input_width'),
                       _check_positive(input_height, 'input_height'))
        x_scale = _check_positive(x_scale, 'x_scale')
        y_scale = _check_positive(y_scale, 'y_scale')
        if x_scale > input_width or y_scale > input_height:
            raise HyperparameterError(
                f"Pooling window {x_scale}x{y_scale} is larger than the input {input_width}x{input_height}")

        output_shape = (input_depth, input_width // x_scale, input_height // y_scale)
        super().__init__(int(np.prod(input_shape)), int(np.prod(output_shape)), dtype=dtype,
                         create_io=create_io, registry=registry)

        self.input_shape = input_shape
        self.output_shape = output_shape
        self.x_scale = x_scale
        self.y_scale = y_scale

        if create_io:
            self._create_own_io()

    def _forward(self, learning):
        apply_max_pool(self.input, self.input_offset, self.input_shape,
                       self.output, self.output_offset, self.x_scale, self.y_scale)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        backpropagate_max_pool(self.input, self.input_offset, self.input_shape,
                               output_error, output_error_offset, input_error, input_error_offset,
                               self.x_scale, self.y_scale)

    def __repr__(self):
        return f"MaxPooling({self.input_shape} -> {self.output_shape})"


class Container(Layer):
    """
    A layer made of other layers.

    Updates, parameter counting and duplication are delegated to the
    children. Subclasses implement ``_rebuild`` to assemble a container of
    the same kind around duplicated children.
    """

    kind = 'container'

    def __init__(self, layers, input_size, output_size, registry=None):
        layers = list(layers)
        if not layers:
            raise HyperparameterError(f"{type(self).__name__} needs at least one layer")
        dtypes = {layer.dtype for layer in layers}
        if len(dtypes) > 1:
            raise ShapeMismatchError(f"Layers mix element types: {sorted(str(d) for d in dtypes)}")

        self.layers = layers
        super().__init__(input_size, output_size, dtype=layers[0].dtype, registry=registry)

    def update_weights(self, rate, momentum=0.0, exclude=None):
        if exclude is None:
            exclude = set()
        for layer in self.layers:
            layer.update_weights(rate, momentum, exclude)

    def count_parameters(self, exclude=None):
        if exclude is None:
            exclude = set()
        return sum(layer.count_parameters(exclude) for layer in self.layers)

    def create_siamese(self):
        twin = self._rebuild([layer.create_siamese() for layer in self.layers])
        twin.siamese_id = self.siamese_id
        return twin

    def clone(self):
        return self._rebuild([layer.clone() for layer in self.layers])

    def _rebuild(self, layers):
        raise NotImplementedError

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    def __getitem__(self, index):
        return self.layers[index]
